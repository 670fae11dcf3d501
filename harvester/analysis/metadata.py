import json
import re
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from harvester.logging.logger import Log
from harvester.processor.exceptions import AnalysisError

RESTRICTIVE_LICENSES = frozenset({"custom", "ask"})

# A JSON string literal, or a comma directly before a closing bracket.
_TRAILING_COMMA = re.compile(r'("(?:\\.|[^"\\])*")|,(\s*[}\]])')


class MetaValue(NamedTuple):
    """A metadata field lookup: whether the key was present, and its value."""

    present: bool
    value: Any


class BookMetadata(BaseModel):
    """The fields of a book's meta.json sidecar that harvesting reads.

    Unknown keys are kept. A key that is missing and a key that is explicitly
    null are told apart through :meth:`get`.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    book_instance_id: str | None = Field(default=None, alias="bookInstanceId")
    title: str | None = None
    license: str | None = None
    features: list[str] | None = None
    language_display_names: dict[str, str] | None = Field(
        default=None, alias="language-display-names"
    )
    branding_project_name: str | None = Field(default=None, alias="brandingProjectName")
    subscription_descriptor: str | None = Field(default=None, alias="subscriptionDescriptor")
    country: str | None = None
    province: str | None = None
    district: str | None = None
    bloom_pub_version: int | None = Field(default=None, alias="bloomPUBVersion")

    @classmethod
    def parse(cls, text: str | None) -> "BookMetadata":
        """Parse meta.json, tolerating trailing commas and badly typed fields.

        A field whose value has the wrong type is dropped (and so reads as
        absent) rather than failing the whole book.
        """
        if not text or not text.strip():
            return cls()
        cleaned = _TRAILING_COMMA.sub(lambda match: match.group(1) or match.group(2), text)
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError as exc:
            raise AnalysisError(f"Invalid book metadata: {exc}") from exc
        if not isinstance(data, dict):
            raise AnalysisError("Invalid book metadata: expected a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            invalid = {str(error["loc"][0]) for error in exc.errors() if error["loc"]}
            Log.warning(f"Ignoring malformed book metadata fields: {', '.join(sorted(invalid))}")
            return cls.model_validate({k: v for k, v in data.items() if k not in invalid})

    def get(self, name: str) -> MetaValue:
        if name not in self.model_fields_set:
            return MetaValue(False, None)
        return MetaValue(True, getattr(self, name))

    def text(self, name: str) -> str:
        """String value of a field, or "" when absent or null."""
        return self.get(name).value or ""

    @property
    def is_license_restrictive(self) -> bool:
        return (self.license or "").lower() in RESTRICTIVE_LICENSES

    @property
    def display_names(self) -> dict[str, str]:
        return self.language_display_names or {}

    def feature_value(self, prefix: str) -> str:
        """Value of the first "prefix:value" feature, or ""."""
        for feature in self.features or []:
            if feature.startswith(f"{prefix}:"):
                return feature[len(prefix) + 1 :]
        return ""
