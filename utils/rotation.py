"""
Rotation State Machine
Pure transitions over the display cursor: slide, panel page and document page.

Nothing here touches timers or I/O. The display controller builds a
RotationPlan from the current slides, feeds events through transition() and
re-arms its timers from the timer_key() of the resulting state.
"""
import enum
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

from models import Slide
from utils.slide_grouper import find_emergency_index


class RotationEvent(enum.Enum):
    TICK = 'tick'
    DOCUMENT_TICK = 'document_tick'
    NEXT = 'next'
    PREVIOUS = 'previous'
    TOGGLE_PLAY = 'toggle_play'
    PLAY = 'play'
    PAUSE = 'pause'


@dataclass(frozen=True)
class RotationState:
    """Display cursor. Replaced, never mutated."""
    slide_index: int = 0
    panel_page_index: int = 0
    document_page_index: int = 0
    document_loop_count: int = 0
    playing: bool = True
    anchor_id: Optional[str] = None

    def to_dict(self):
        return {
            'slide_index': self.slide_index,
            'panel_page_index': self.panel_page_index,
            'document_page_index': self.document_page_index,
            'document_loop_count': self.document_loop_count,
            'playing': self.playing,
            'anchor_id': self.anchor_id,
        }


@dataclass(frozen=True)
class SlidePlan:
    """What the state machine needs to know about one slide"""
    anchor_id: str
    is_batch: bool = False
    is_emergency: bool = False
    tile_count: int = 1
    stream_count: int = 0
    panel_page_count: int = 1
    document_page_count: int = 0

    @property
    def document_paced(self) -> bool:
        """Single, stream-free slide whose document has several pages"""
        return not self.is_batch and self.stream_count == 0 and self.document_page_count > 1

    @property
    def has_document_pages(self) -> bool:
        return not self.is_batch and self.document_page_count > 1


@dataclass(frozen=True)
class RotationPlan:
    slides: Tuple[SlidePlan, ...] = field(default_factory=tuple)
    emergency_index: Optional[int] = None
    loops_before_advance: int = 2

    @property
    def slide_count(self) -> int:
        return len(self.slides)

    @property
    def is_emergency(self) -> bool:
        return self.emergency_index is not None

    def active_index(self, state: RotationState) -> Optional[int]:
        if not self.slides:
            return None
        if self.is_emergency:
            return self.emergency_index
        return min(max(state.slide_index, 0), self.slide_count - 1)

    def active_slide(self, state: RotationState) -> Optional[SlidePlan]:
        index = self.active_index(state)
        return None if index is None else self.slides[index]


def panel_page_count(tile_count: int, tile_cap: int) -> int:
    return max(1, math.ceil(tile_count / max(1, tile_cap)))


def build_plan(slides: Sequence[Slide], stream_counts: Optional[Dict[str, int]] = None,
               document_page_counts: Optional[Dict[str, int]] = None, tile_cap: int = 4,
               loops_before_advance: int = 2) -> RotationPlan:
    """
    Build a RotationPlan

    Args:
        slides: Grouped slides in rotation order
        stream_counts: Resolved stream tiles per slide key
        document_page_counts: Decoded page counts per slide key (absent = not decoded yet)
        tile_cap: Tiles that fit on one screen
        loops_before_advance: Full document loops before a paced slide advances
    """
    stream_counts = stream_counts or {}
    document_page_counts = document_page_counts or {}

    plans = []
    for slide in slides:
        streams = stream_counts.get(slide.key, 0)
        tiles = streams + len(slide.members)
        plans.append(SlidePlan(
            anchor_id=slide.anchor.id,
            is_batch=slide.is_batch,
            is_emergency=slide.is_emergency,
            tile_count=tiles,
            stream_count=streams,
            panel_page_count=panel_page_count(tiles, tile_cap),
            document_page_count=document_page_counts.get(slide.key, 0),
        ))

    return RotationPlan(
        slides=tuple(plans),
        emergency_index=find_emergency_index(slides),
        loops_before_advance=max(1, loops_before_advance),
    )


def _enter_slide(state: RotationState, plan: RotationPlan, index: int) -> RotationState:
    return RotationState(
        slide_index=index,
        playing=state.playing,
        anchor_id=plan.slides[index].anchor_id,
    )


def _step_slide(state: RotationState, plan: RotationPlan, step: int) -> RotationState:
    count = plan.slide_count
    current = plan.active_index(state)
    return _enter_slide(state, plan, (current + step + count) % count)


def reconcile(state: RotationState, plan: RotationPlan) -> RotationState:
    """
    Fit the cursor to a new plan

    The slide index is clamped into range (or pinned to the emergency slide).
    Counters reset when the active anchor changes; otherwise they are clamped
    to the new page counts.
    """
    if not plan.slides:
        return RotationState(playing=state.playing)

    index = plan.active_index(state)
    slide = plan.slides[index]
    if slide.anchor_id != state.anchor_id:
        return _enter_slide(state, plan, index)

    panel = min(state.panel_page_index, slide.panel_page_count - 1)
    document = state.document_page_index
    if slide.document_page_count:
        document = min(document, slide.document_page_count - 1)
    return replace(state, slide_index=index, panel_page_index=panel, document_page_index=document)


def _tick(state: RotationState, plan: RotationPlan, slide: SlidePlan) -> RotationState:
    if not state.playing or plan.is_emergency or slide.document_paced:
        return state
    if state.panel_page_index + 1 < slide.panel_page_count:
        return replace(state, panel_page_index=state.panel_page_index + 1)
    return _step_slide(state, plan, 1)


def _document_tick(state: RotationState, plan: RotationPlan, slide: SlidePlan) -> RotationState:
    if not state.playing or not slide.has_document_pages:
        return state

    next_page = (state.document_page_index + 1) % slide.document_page_count
    loops = state.document_loop_count + (1 if next_page == 0 else 0)

    if slide.document_paced and not plan.is_emergency and loops >= plan.loops_before_advance:
        return _step_slide(state, plan, 1)
    return replace(state, document_page_index=next_page, document_loop_count=loops)


def _manual(state: RotationState, plan: RotationPlan, slide: SlidePlan, step: int) -> RotationState:
    if plan.is_emergency:
        return state
    if step > 0 and state.panel_page_index + 1 < slide.panel_page_count:
        return replace(state, panel_page_index=state.panel_page_index + 1)
    if step < 0 and state.panel_page_index > 0:
        return replace(state, panel_page_index=state.panel_page_index - 1)
    return _step_slide(state, plan, step)


def transition(state: RotationState, event: RotationEvent, plan: RotationPlan) -> RotationState:
    """
    Apply one event

    TICK advances a panel page, or the slide once panel pages are exhausted.
    It does nothing while paused, during an emergency, or on a slide paced by
    its own document. DOCUMENT_TICK cycles document pages and, for a paced
    slide, advances once the document has wrapped loops_before_advance times.
    NEXT/PREVIOUS consume panel pages before moving the slide and are
    disabled during an emergency.
    """
    if event is RotationEvent.TOGGLE_PLAY:
        return replace(state, playing=not state.playing)
    if event is RotationEvent.PLAY:
        return replace(state, playing=True)
    if event is RotationEvent.PAUSE:
        return replace(state, playing=False)

    if not plan.slides:
        return state
    state = reconcile(state, plan)
    slide = plan.active_slide(state)

    if event is RotationEvent.TICK:
        return _tick(state, plan, slide)
    if event is RotationEvent.DOCUMENT_TICK:
        return _document_tick(state, plan, slide)
    if event is RotationEvent.NEXT:
        return _manual(state, plan, slide, 1)
    if event is RotationEvent.PREVIOUS:
        return _manual(state, plan, slide, -1)
    raise ValueError(f'Unknown rotation event: {event}')


def wants_slide_timer(state: RotationState, plan: RotationPlan) -> bool:
    slide = plan.active_slide(state)
    if slide is None or not state.playing or plan.is_emergency:
        return False
    return not slide.document_paced


def wants_document_timer(state: RotationState, plan: RotationPlan) -> bool:
    slide = plan.active_slide(state)
    return slide is not None and state.playing and slide.has_document_pages


def timer_key(state: RotationState, plan: RotationPlan):
    """Timers are re-armed whenever this key changes"""
    slide = plan.active_slide(state)
    if slide is None:
        return None
    return (
        slide.anchor_id,
        slide.panel_page_count,
        slide.document_page_count,
        state.playing,
        wants_slide_timer(state, plan),
        wants_document_timer(state, plan),
    )


def panel_window(tiles: List, panel_page_index: int, tile_cap: int) -> List:
    """Tiles shown on one panel page"""
    cap = max(1, tile_cap)
    start = max(0, panel_page_index) * cap
    return tiles[start:start + cap]
