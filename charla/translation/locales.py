# translation/locales.py
from dataclasses import dataclass
from typing import Optional


ORIGINAL_LOCALE = "original"


class UnsupportedLocaleError(ValueError):
    """El código de idioma no está en la tabla de locales soportados."""
    pass


@dataclass(frozen=True)
class Locale:
    code:        str
    language:    str   # nombre usado en los prompts y en locale_name
    native_name: str


SUPPORTED_LOCALES: tuple[Locale, ...] = (
    Locale("es-ES", "español",             "Español"),
    Locale("es-MX", "español de México",   "Español (México)"),
    Locale("en-US", "inglés",              "English (US)"),
    Locale("en-GB", "inglés británico",    "English (UK)"),
    Locale("nl-NL", "neerlandés",          "Nederlands"),
    Locale("de-DE", "alemán",              "Deutsch"),
    Locale("fr-FR", "francés",             "Français"),
    Locale("it-IT", "italiano",            "Italiano"),
    Locale("pt-BR", "portugués de Brasil", "Português (Brasil)"),
    Locale("pt-PT", "portugués",           "Português"),
    Locale("pl-PL", "polaco",              "Polski"),
    Locale("sv-SE", "sueco",               "Svenska"),
    Locale("da-DK", "danés",               "Dansk"),
    Locale("nb-NO", "noruego",             "Norsk"),
    Locale("fi-FI", "finés",               "Suomi"),
    Locale("tr-TR", "turco",               "Türkçe"),
    Locale("ru-RU", "ruso",                "Русский"),
    Locale("uk-UA", "ucraniano",           "Українська"),
    Locale("ar-SA", "árabe",               "العربية"),
    Locale("hi-IN", "hindi",               "हिन्दी"),
    Locale("ja-JP", "japonés",             "日本語"),
    Locale("ko-KR", "coreano",             "한국어"),
    Locale("zh-CN", "chino simplificado",  "简体中文"),
    Locale("zh-TW", "chino tradicional",   "繁體中文"),
)

_BY_CODE = {locale.code: locale for locale in SUPPORTED_LOCALES}


def get_locale_by_code(code: str) -> Optional[Locale]:
    return _BY_CODE.get(code)


def require_locale(code: str) -> Locale:
    locale = get_locale_by_code(code)
    if locale is None:
        supported = ", ".join(l.code for l in SUPPORTED_LOCALES)
        raise UnsupportedLocaleError(
            f"Idioma no soportado: '{code}'. Soportados: {supported}"
        )
    return locale
