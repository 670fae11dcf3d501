from harvester.database.models import DocumentRecord

EPUB_UNSUITABLE_REASON = "harvest-reason-epub-deemed-unsuitable"
LICENSE_RESTRICTION_REASON = "harvest-reason-copyright-license-restriction"


def set_tag(record: DocumentRecord, key: str, value: str) -> None:
    """Replace every "key:..." tag with a single "key:value"."""
    record.tags = [tag for tag in record.tags if tag.split(":", 1)[0] != key]
    record.tags.append(f"{key}:{value}")


def add_tag(record: DocumentRecord, key: str, value: str) -> None:
    """Add "key:value" unless that exact tag is present; other values of key are kept."""
    tag = f"{key}:{value}"
    if tag not in record.tags:
        record.tags = [*record.tags, tag]


def set_show_value(record: DocumentRecord, artifact: str, key: str, value: object) -> None:
    record.show.setdefault(artifact, {})[key] = value


def set_harvester_evaluation(
    record: DocumentRecord,
    artifact: str,
    suitable: bool,
    reason_to_hide: str | None = None,
) -> None:
    """Record whether the harvester considers an artifact fit to show."""
    settings = record.show.setdefault(artifact, {})
    settings["harvester"] = suitable
    if suitable or reason_to_hide is None:
        settings.pop("harvesterReasonToHideId", None)
    else:
        settings["harvesterReasonToHideId"] = reason_to_hide
