"""Book analysis: languages, reading level, epub suitability and image choice.

Flow: parse the book's HTML and meta.json once, read the generator version
from the Generator meta tag, then resolve collection settings. Books from a
generator new enough to upload their collection settings use those; all
others derive languages and region from the markup and metadata. Publish
settings are loaded (and back-filled for older books) at the same time.
"""

import re
from pathlib import Path

from bs4 import BeautifulSoup, Comment, NavigableString, Tag

from harvester.analysis.collection_settings import (
    UPLOADED_SETTINGS_PATH,
    CollectionSettings,
    find_xmatter_pack,
    load_uploaded_settings,
)
from harvester.analysis.metadata import BookMetadata
from harvester.analysis.publish_settings import FIXED, epub_mode, load_publish_settings
from harvester.analysis.tokenizer import level_for_word_count, word_count
from harvester.analysis.versioning import (
    FIXED_EPUB_MODE_DEFAULT,
    UPLOADED_COLLECTION_SETTINGS,
    Version,
)
from harvester.processor.log_entries import LogEntry, LogLevel, LogType

CANVAS = "bloom-canvas"
IMAGE_CONTAINER = "bloom-imageContainer"
TRANSLATION_GROUP = "bloom-translationGroup"
IMAGE_DESCRIPTION = "bloom-imageDescription"
PLACEHOLDER_IMAGE = "placeHolder.png"

_BACKGROUND_URL = re.compile(r"background-image\s*:\s*url\(([^)]*)\)", re.IGNORECASE)


def _has_class(tag: Tag, name: str) -> bool:
    return name in (tag.get("class") or [])


def _is_valid_language(code: str | None) -> bool:
    return bool(code) and code not in ("*", "z")


def _region_text(region: Tag) -> str:
    parts: list[str] = []
    for node in region.descendants:
        if isinstance(node, NavigableString):
            if not isinstance(node, Comment):
                parts.append(str(node))
        elif node.name in ("br", "p"):
            parts.append("\n")
    return "".join(parts)


def _usable_sources(images: list[Tag]) -> list[str]:
    sources = [(img.get("src") or "").strip() for img in images]
    return [src for src in sources if src and src != PLACEHOLDER_IMAGE]


class DocumentAnalyzer:
    """Derived facts about one downloaded book."""

    def __init__(self, html: str, meta_json: str, book_dir: Path | None = None) -> None:
        self.dom = BeautifulSoup(html, "html.parser")
        self.metadata = BookMetadata.parse(meta_json)
        self.book_dir = book_dir
        self.log_entries: list[LogEntry] = []
        self._uploaded_settings_xml: str | None = None
        self.generator_version = self._read_generator_version()
        self.publish_settings = load_publish_settings(book_dir, self.generator_version)
        self.settings = self._load_uploaded_settings() or self._derive_settings()

    @classmethod
    def from_folder(cls, book_dir: Path, html_path: Path) -> "DocumentAnalyzer":
        meta_path = book_dir / "meta.json"
        meta = meta_path.read_text(encoding="utf-8") if meta_path.is_file() else ""
        return cls(html_path.read_text(encoding="utf-8"), meta, book_dir)

    @property
    def language1_code(self) -> str:
        return self.settings.language1_code

    @property
    def language2_code(self) -> str:
        return self.settings.language2_code

    @property
    def language3_code(self) -> str:
        return self.settings.language3_code

    @property
    def sign_language_code(self) -> str:
        return self.settings.sign_language_code

    @property
    def subscription_code(self) -> str | None:
        return self.settings.subscription_code

    @property
    def bookshelf(self) -> str:
        return self.settings.bookshelf

    @property
    def is_license_restrictive(self) -> bool:
        return self.metadata.is_license_restrictive

    @property
    def render_mode(self) -> str:
        return epub_mode(self.publish_settings)

    def settings_document(self) -> str:
        """Collection settings document to hand the renderer alongside the book."""
        if self._uploaded_settings_xml is not None:
            return self._uploaded_settings_xml
        return self.settings.to_xml()

    def _read_generator_version(self) -> Version:
        meta = self.dom.find("meta", attrs={"name": re.compile("^generator$", re.IGNORECASE)})
        if meta is None:
            return Version()
        return Version.parse(meta.get("content", ""))

    def _load_uploaded_settings(self) -> CollectionSettings | None:
        if self.book_dir is None or self.generator_version < UPLOADED_COLLECTION_SETTINGS:
            return None
        path = self.book_dir / UPLOADED_SETTINGS_PATH
        if not path.is_file():
            return None
        xml_text = path.read_text(encoding="utf-8")
        settings = load_uploaded_settings(xml_text)
        self._uploaded_settings_xml = xml_text
        return settings

    def _derive_settings(self) -> CollectionSettings:
        language1 = self._data_div_value("contentLanguage1")
        language2 = self._lang_of_first("bloom-contentNational1") or self._data_div_value(
            "contentLanguage2"
        )
        language3 = self._lang_of_first("bloom-contentNational2") or self._data_div_value(
            "contentLanguage3"
        )
        sign_language = self.metadata.feature_value("signLanguage")
        names = self.metadata.display_names

        def name_of(code: str) -> str:
            return names.get(code, code) if code else ""

        branding = self.metadata.text("branding_project_name")
        return CollectionSettings(
            language1_code=language1,
            language2_code=language2,
            language3_code=language3,
            sign_language_code=sign_language,
            language1_name=name_of(language1),
            language2_name=name_of(language2),
            language3_name=name_of(language3),
            sign_language_name=name_of(sign_language),
            xmatter_pack=find_xmatter_pack(self.book_dir),
            country=self.metadata.text("country"),
            province=self.metadata.text("province"),
            district=self.metadata.text("district"),
            subscription_code=f"{branding}-***-***" if branding else None,
        )

    def _data_div_value(self, key: str) -> str:
        data_div = self.dom.find("div", id="bloomDataDiv")
        if data_div is None:
            return ""
        for entry in data_div.find_all(attrs={"data-book": key}):
            value = entry.get_text().strip()
            if value:
                return value
        return ""

    def _lang_of_first(self, css_class: str) -> str:
        for element in self.dom.find_all(class_=css_class):
            lang = element.get("lang", "")
            if _is_valid_language(lang):
                return lang
        return ""

    def _numbered_pages(self) -> list[Tag]:
        return self.dom.find_all("div", class_="numberedPage")

    def _text_groups(self, page: Tag) -> list[Tag]:
        groups: list[Tag] = []
        for margin_box in page.find_all("div", class_="marginBox", recursive=False):
            for group in margin_box.find_all("div", class_=TRANSLATION_GROUP):
                if _has_class(group, "box-header-off") or _has_class(group, IMAGE_DESCRIPTION):
                    continue
                groups.append(group)
        return groups

    def is_epub_suitable(self) -> bool:
        """Whether every content page fits the epub layout (one image, text box, video)."""
        if self.render_mode == FIXED and self.generator_version >= FIXED_EPUB_MODE_DEFAULT:
            return True

        pages = self._numbered_pages()
        if not pages:
            self._note_unsuitable("Bad ePUB because there were no content pages")
            return False

        for page in pages:
            margin_boxes = page.find_all("div", class_="marginBox", recursive=False)
            images = sum(len(box.find_all("div", class_=IMAGE_CONTAINER)) for box in margin_boxes)
            if images > 1:
                self._note_unsuitable("Bad ePUB because some page(s) had multiple images")
                return False
            if len(self._text_groups(page)) > 1:
                self._note_unsuitable("Bad ePUB because some page(s) had multiple text boxes")
                return False
            videos = sum(len(box.find_all("video")) for box in margin_boxes)
            if videos > 1:
                self._note_unsuitable("Bad ePUB because some page(s) had multiple videos")
                return False
        return True

    def _note_unsuitable(self, message: str) -> None:
        self.log_entries.append(LogEntry(LogLevel.INFO, LogType.ARTIFACT_SUITABILITY, message))

    def max_words_per_page(self) -> int:
        language = self.language1_code
        filter_language = _is_valid_language(language)
        most = 0
        for page in self._numbered_pages():
            seen: set[int] = set()
            total = 0
            for group in self._text_groups(page):
                for editable in group.find_all("div", class_="bloom-editable"):
                    if filter_language and editable.get("lang") != language:
                        continue
                    if id(editable) in seen:
                        continue
                    seen.add(id(editable))
                    total += word_count(_region_text(editable))
            most = max(most, total)
        return most

    def compute_level(self) -> int:
        """Reading level 1-4 from the wordiest numbered page."""
        return level_for_word_count(self.max_words_per_page())

    def select_fingerprint_images(self) -> list[str]:
        """Image sources to fingerprint, from the first tier that has any.

        Tiers: content page images, content page background images, cover
        images, cover background images.
        """
        content_pages = [
            div
            for div in self.dom.find_all("div", class_="bloom-page")
            if _has_class(div, "numberedPage")
            and not div.has_attr("data-activity")
            and div.get("data-tool-id") != "game"
        ]
        cover_pages = [
            div
            for div in self.dom.find_all("div", class_="bloom-page")
            if div.get("data-xmatter-page") == "frontCover"
        ]
        images = self._images_in(content_pages, (CANVAS, IMAGE_CONTAINER))
        sources = _usable_sources(images) or self._background_images(content_pages)
        if sources:
            return sources
        # Covers keep overlay images in image containers inside the canvas.
        images = self._images_in(cover_pages, (CANVAS,)) or self._images_in(
            cover_pages, (IMAGE_CONTAINER,)
        )
        return _usable_sources(images) or self._background_images(cover_pages)

    @staticmethod
    def _images_in(pages: list[Tag], wrapper_classes: tuple[str, ...]) -> list[Tag]:
        """img elements that are direct children of a wrapper div."""
        images: list[Tag] = []
        for page in pages:
            for img in page.find_all("img"):
                parent = img.parent
                if not isinstance(parent, Tag) or parent.name != "div":
                    continue
                if any(_has_class(parent, name) for name in wrapper_classes):
                    images.append(img)
        return images

    @staticmethod
    def _background_images(pages: list[Tag]) -> list[str]:
        wrappers = [div for page in pages for div in page.find_all("div", class_=CANVAS)]
        if not wrappers:
            wrappers = [
                div for page in pages for div in page.find_all("div", class_=IMAGE_CONTAINER)
            ]
        sources: list[str] = []
        for wrapper in wrappers:
            match = _BACKGROUND_URL.search(wrapper.get("style") or "")
            if match is None:
                continue
            src = match.group(1).strip().strip("'\"")
            if src and src != PLACEHOLDER_IMAGE:
                sources.append(src)
        return sources
