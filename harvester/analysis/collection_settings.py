import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path

from harvester.processor.exceptions import AnalysisError

UPLOADED_SETTINGS_PATH = Path("collectionFiles") / "book.uploadCollectionSettings"
DEFAULT_XMATTER_PACK = "Device"
XMATTER_SUFFIX = "-XMatter.css"
BOOKSHELF_TAG_PREFIX = "bookshelf:"


@dataclass
class CollectionSettings:
    """Language, region and branding values the renderer reads from a collection."""

    language1_code: str = ""
    language2_code: str = ""
    language3_code: str = ""
    sign_language_code: str = ""
    language1_name: str = ""
    language2_name: str = ""
    language3_name: str = ""
    sign_language_name: str = ""
    xmatter_pack: str = DEFAULT_XMATTER_PACK
    country: str = ""
    province: str = ""
    district: str = ""
    subscription_code: str | None = None
    bookshelf: str = ""

    def to_xml(self) -> str:
        """Render the settings as a minimal collection settings document."""
        root = ET.Element("Collection", version="0.2")
        for tag, value in (
            ("Language1Iso639Code", self.language1_code),
            ("Language2Iso639Code", self.language2_code),
            ("Language3Iso639Code", self.language3_code),
            ("SignLanguageIso639Code", self.sign_language_code),
            ("Language1Name", self.language1_name),
            ("Language2Name", self.language2_name),
            ("Language3Name", self.language3_name),
            ("SignLanguageName", self.sign_language_name),
            ("XMatterPack", self.xmatter_pack),
            ("Country", self.country),
            ("Province", self.province),
            ("District", self.district),
        ):
            ET.SubElement(root, tag).text = value
        if self.subscription_code:
            ET.SubElement(root, "SubscriptionCode").text = self.subscription_code
        if self.bookshelf:
            ET.SubElement(root, "DefaultBookTags").text = f"{BOOKSHELF_TAG_PREFIX}{self.bookshelf}"
        ET.indent(root)
        return '<?xml version="1.0" encoding="utf-8"?>\n' + ET.tostring(root, encoding="unicode")


def load_uploaded_settings(xml_text: str) -> CollectionSettings:
    """Read the collection settings uploaded alongside a book."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise AnalysisError(f"Uploaded collection settings are not valid XML: {exc}") from exc

    def value(tag: str) -> str:
        return (root.findtext(tag) or "").strip()

    bookshelf = ""
    for tag in value("DefaultBookTags").split(","):
        tag = tag.strip()
        if tag.startswith(BOOKSHELF_TAG_PREFIX):
            bookshelf = tag[len(BOOKSHELF_TAG_PREFIX) :]
            break

    return CollectionSettings(
        language1_code=value("Language1Iso639Code"),
        language2_code=value("Language2Iso639Code"),
        language3_code=value("Language3Iso639Code"),
        sign_language_code=value("SignLanguageIso639Code"),
        language1_name=value("Language1Name"),
        language2_name=value("Language2Name"),
        language3_name=value("Language3Name"),
        sign_language_name=value("SignLanguageName"),
        xmatter_pack=value("XMatterPack") or DEFAULT_XMATTER_PACK,
        country=value("Country"),
        province=value("Province"),
        district=value("District"),
        subscription_code=value("SubscriptionCode") or value("BrandingProjectName") or None,
        bookshelf=bookshelf,
    )


def find_xmatter_pack(book_dir: Path | None) -> str:
    """XMatter pack named by a "<pack>-XMatter.css" file in the book folder."""
    if book_dir is None or not book_dir.is_dir():
        return DEFAULT_XMATTER_PACK
    for css in sorted(book_dir.glob(f"*{XMATTER_SUFFIX}")):
        return css.name[: -len(XMATTER_SUFFIX)]
    return DEFAULT_XMATTER_PACK
