"""Instruction templates for quiz generation."""

QUIZ_SYSTEM_PROMPT = (
    "You are an expert programming educator. You write comprehension quizzes "
    "about concrete code and answer with JSON only."
)

QUIZ_PROMPT = """Write {count} comprehension quizzes about the code below.

[File] {title}
[Language] {language}

[Code]
```{language}
{code}
```

[Output format]
Output a JSON array only, with no other text:

[
  {{
    "level": 1,
    "question": "Why does the code ...?",
    "codeSnippet": "the 5-10 lines the question refers to",
    "codeLanguage": "{language}",
    "options": [
      {{"label": "A", "text": "option 1 (max 20 words)", "explanation": "why this option is right or wrong"}},
      {{"label": "B", "text": "option 2", "explanation": "..."}},
      {{"label": "C", "text": "option 3", "explanation": "..."}}
    ],
    "correctLabel": "B",
    "hint": "short hint"
  }}
]

[Rules]
1. Every question asks "Why ...?" about a concrete decision in the code.
2. Use the real function, variable and syntax names; always include codeSnippet.
3. Each question targets a different part of the code or a different concept.
4. Spread correct answers across A/B/C.
5. Every option must look plausible and carry an explanation.
6. Avoid self-assessment, abstract purpose and generic design-pattern questions."""
