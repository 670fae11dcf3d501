from harvester.analysis.versioning import Version
from harvester.database.filters import Filter, merge_filters
from harvester.database.models import HarvestState
from harvester.selection.policy import HarvestMode

IN_CIRCULATION: Filter = {"inCirculation": True}


def version_filter(current: Version, include_current: bool) -> Filter:
    """Books last harvested by an older (or, optionally, the same) version."""
    minor_operator = "$lte" if include_current else "$lt"
    return {
        "$or": [
            {"harvesterMajorVersion": {"$lt": current.major}},
            {
                "harvesterMajorVersion": current.major,
                "harvesterMinorVersion": {minor_operator: current.minor},
            },
            {"harvesterMajorVersion": {"$exists": False}},
        ]
    }


def mode_filter(mode: HarvestMode, current: Version) -> Filter:
    """Catalog-side narrowing that the selection rules would apply anyway."""
    if mode is HarvestMode.FORCE_ALL:
        return {}
    if mode is HarvestMode.ALL:
        return dict(IN_CIRCULATION)
    if mode is HarvestMode.NEEDED_ONLY:
        needed = [
            HarvestState.NEW.value,
            HarvestState.UPDATED.value,
            HarvestState.UNKNOWN.value,
            HarvestState.REQUESTED.value,
        ]
        return merge_filters({"harvestState": {"$in": needed}}, IN_CIRCULATION)
    if mode is HarvestMode.RETRY_FAILURES:
        return merge_filters(
            {"harvestState": HarvestState.FAILED.value},
            version_filter(current, include_current=True),
            IN_CIRCULATION,
        )
    return merge_filters(
        {
            "$or": [
                version_filter(current, include_current=False),
                {
                    "harvestState": {
                        "$nin": [HarvestState.DONE.value, HarvestState.FAILED.value]
                    }
                },
            ]
        },
        IN_CIRCULATION,
    )


def build_query(mode: HarvestMode, current: Version, user_filter: Filter | None = None) -> Filter:
    """Mode optimisations ANDed with the caller's own filter."""
    return merge_filters(mode_filter(mode, current), user_filter)
