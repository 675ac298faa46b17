from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class AddOnLanguage:
    code: str
    name_en: str
    name_it: str

    @property
    def invoice_description(self) -> str:
        return f"{self.name_en} Language Add-on"

    def display_name(self, locale: str) -> str:
        return self.name_it if locale == "it" else self.name_en


# English and Italian are included in the base package.
EUROPEAN_LANGUAGES: tuple[AddOnLanguage, ...] = (
    AddOnLanguage("nl", "Dutch", "Olandese"),
    AddOnLanguage("fr", "French", "Francese"),
    AddOnLanguage("de", "German", "Tedesco"),
    AddOnLanguage("pt", "Portuguese", "Portoghese"),
    AddOnLanguage("es", "Spanish", "Spagnolo"),
    AddOnLanguage("da", "Danish", "Danese"),
    AddOnLanguage("fi", "Finnish", "Finlandese"),
    AddOnLanguage("no", "Norwegian", "Norvegese"),
    AddOnLanguage("sv", "Swedish", "Svedese"),
    AddOnLanguage("bg", "Bulgarian", "Bulgaro"),
    AddOnLanguage("cs", "Czech", "Ceco"),
    AddOnLanguage("hu", "Hungarian", "Ungherese"),
    AddOnLanguage("pl", "Polish", "Polacco"),
    AddOnLanguage("ro", "Romanian", "Rumeno"),
    AddOnLanguage("sk", "Slovak", "Slovacco"),
    AddOnLanguage("uk", "Ukrainian", "Ucraino"),
    AddOnLanguage("sq", "Albanian", "Albanese"),
    AddOnLanguage("bs", "Bosnian", "Bosniaco"),
    AddOnLanguage("hr", "Croatian", "Croato"),
    AddOnLanguage("el", "Greek", "Greco"),
    AddOnLanguage("sr", "Serbian", "Serbo"),
    AddOnLanguage("sl", "Slovenian", "Sloveno"),
    AddOnLanguage("tr", "Turkish", "Turco"),
    AddOnLanguage("ca", "Catalan", "Catalano"),
    AddOnLanguage("lv", "Latvian", "Lettone"),
    AddOnLanguage("lt", "Lithuanian", "Lituano"),
)

_BY_CODE = {language.code: language for language in EUROPEAN_LANGUAGES}


def get_language(code: str) -> AddOnLanguage | None:
    return _BY_CODE.get(code)


def is_valid_language_code(code: str) -> bool:
    return code in _BY_CODE


def invalid_language_codes(codes: list[str]) -> list[str]:
    return [code for code in codes if not is_valid_language_code(code)]
