"""Localized user-facing error messages (ja / en)."""

from typing import Dict, Optional

SUPPORTED_LOCALES = ("ja", "en")

ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    # Authorization
    "UNAUTHORIZED": {
        "ja": "ログインが必要です",
        "en": "Authentication required",
    },
    "FORBIDDEN": {
        "ja": "この操作を行う権限がありません",
        "en": "You don't have permission for this action",
    },
    # Credits / tokens
    "TOKEN_LIMIT_EXCEEDED": {
        "ja": "本日のクレジット上限に達しました",
        "en": "Daily credit limit exceeded",
    },
    "OUT_OF_CREDITS": {
        "ja": "クレジットがなくなりました。追加購入またはプランのアップグレードをご検討ください",
        "en": "Out of credits. Consider purchasing more or upgrading your plan",
    },
    # Validation
    "VALIDATION_ERROR": {
        "ja": "入力内容に問題があります",
        "en": "Validation error",
    },
    "ALREADY_ANSWERED": {
        "ja": "このクイズは既に回答済みです",
        "en": "This quiz has already been answered",
    },
    # Rate limiting
    "RATE_LIMIT_EXCEEDED": {
        "ja": "リクエスト制限に達しました。しばらく待ってからお試しください",
        "en": "Rate limit exceeded. Please try again later",
    },
    # Server
    "CONFIG_ERROR": {
        "ja": "サーバーの設定に問題があります",
        "en": "Server configuration error",
    },
    "INTERNAL_ERROR": {
        "ja": "サーバーエラーが発生しました。しばらく経ってから再度お試しください",
        "en": "Internal server error. Please try again later",
    },
    "AI_ERROR": {
        "ja": "AI処理中にエラーが発生しました",
        "en": "Error during AI processing",
    },
    # Resource
    "NOT_FOUND": {
        "ja": "指定されたリソースが見つかりません",
        "en": "Resource not found",
    },
    "CONFLICT": {
        "ja": "データの競合が発生しました。ページを更新してください",
        "en": "Data conflict. Please refresh the page",
    },
}

_FALLBACK = {"ja": "エラーが発生しました", "en": "An error occurred"}


def resolve_locale(accept_language: Optional[str], default: str = "ja") -> str:
    """Pick the first supported locale from an Accept-Language header."""
    if accept_language:
        for part in accept_language.split(","):
            tag = part.split(";")[0].strip().lower()
            primary = tag.split("-")[0]
            if primary in SUPPORTED_LOCALES:
                return primary
    return default if default in SUPPORTED_LOCALES else "en"


def get_error_message(code: str, locale: str = "ja") -> str:
    if locale not in SUPPORTED_LOCALES:
        locale = "en"
    messages = ERROR_MESSAGES.get(code)
    if not messages:
        return _FALLBACK[locale]
    return messages[locale]
