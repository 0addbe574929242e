"""
Slide Grouping
Collapses the flat announcement list into ordered rotation slides
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from models import AnnouncementRow, Slide, normalize_category


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def visible_rows(rows: Iterable[AnnouncementRow], now: Optional[datetime] = None,
                 display_category: str = 'all') -> List[AnnouncementRow]:
    """
    Keep rows that should be on screen for this display right now

    Emergencies and uncategorised rows are visible to every display category.
    Input order is preserved.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    requested = normalize_category(display_category)

    visible = []
    for row in rows:
        if not row.is_visible_at(now):
            continue
        if requested != 'all' and not row.is_emergency:
            if row.category and row.category.lower() != requested:
                continue
        visible.append(row)
    return visible


def member_sort_key(row: AnnouncementRow):
    """Slot (when positive) first, then creation time, then id"""
    slot = row.batch_slot if row.batch_slot and row.batch_slot > 0 else None
    return (
        slot is None,
        slot or 0,
        row.created_at or _EPOCH,
        row.id,
    )


def group_slides(rows: Iterable[AnnouncementRow]) -> List[Slide]:
    """
    Group rows into slides, preserving first-seen order of grouping keys

    Rows sharing a non-empty batch id merge into one slide wherever they sit
    in the input; other rows become singleton slides keyed by their own id.
    Batch members are de-duplicated by row id.
    """
    order: List[str] = []
    batches: Dict[str, Dict[str, AnnouncementRow]] = {}
    singles: Dict[str, AnnouncementRow] = {}

    for row in rows:
        if row.batch_id:
            key = f'batch:{row.batch_id}'
            if key not in batches:
                batches[key] = {}
                order.append(key)
            batches[key].setdefault(row.id, row)
        else:
            key = f'row:{row.id}'
            if key in singles:
                continue
            singles[key] = row
            order.append(key)

    slides = []
    for key in order:
        if key in batches:
            members = sorted(batches[key].values(), key=member_sort_key)
            slides.append(Slide(key=key, members=tuple(members), is_batch=True))
        else:
            slides.append(Slide(key=key, members=(singles[key],)))
    return slides


def find_emergency_index(slides: List[Slide]) -> Optional[int]:
    """Index of the first slide whose anchor row is priority 0"""
    for index, slide in enumerate(slides):
        if slide.is_emergency:
            return index
    return None


def slides_signature(slides: List[Slide]):
    """Identity of a slide list: keys and member ids in order"""
    return tuple((slide.key, slide.member_ids) for slide in slides)
