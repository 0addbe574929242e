import itertools
from datetime import timedelta

from models import AnnouncementRow
from utils.slide_grouper import find_emergency_index, group_slides, slides_signature, visible_rows

from conftest import NOW


def test_batch_members_ordered_by_slot(make_row):
    rows = [
        make_row('a', batch_id='B1', batch_slot=2),
        make_row('b', batch_id='B1', batch_slot=1),
        make_row('c', batch_id='B1', batch_slot=3),
    ]

    slides = group_slides(rows)

    assert len(slides) == 1
    assert slides[0].is_batch
    assert slides[0].member_ids == ('b', 'a', 'c')


def test_every_row_lands_in_exactly_one_slide(make_row):
    rows = [
        make_row('1'),
        make_row('2', batch_id='B1', batch_slot=1),
        make_row('3'),
        make_row('4', batch_id='B2'),
        make_row('5', batch_id='B1', batch_slot=2),
        make_row('6', title='', content=''),
    ]

    slides = group_slides(rows)

    assert len(slides) <= len(rows)
    placed = [member_id for slide in slides for member_id in slide.member_ids]
    assert sorted(placed) == sorted(row.id for row in rows)


def test_first_seen_key_order_with_scattered_batch(make_row):
    rows = [
        make_row('x'),
        make_row('b1', batch_id='B'),
        make_row('y'),
        make_row('b2', batch_id='B'),
    ]

    slides = group_slides(rows)

    assert [slide.key for slide in slides] == ['row:x', 'batch:B', 'row:y']
    assert slides[1].member_ids == ('b1', 'b2')


def test_member_order_independent_of_input_order(make_row):
    rows = [
        make_row('m1', batch_id='B', batch_slot=1),
        make_row('m2', batch_id='B', created_offset=5),
        make_row('m3', batch_id='B', created_offset=5),
        make_row('m4', batch_id='B', batch_slot=1, created_offset=-10),
        make_row('m5', batch_id='B'),
    ]

    orders = {group_slides(list(permutation))[0].member_ids for permutation in itertools.permutations(rows)}

    assert orders == {('m4', 'm1', 'm5', 'm2', 'm3')}


def test_batch_members_deduplicated_by_id(make_row):
    row = make_row('dup', batch_id='B', batch_slot=1)
    other = make_row('other', batch_id='B', batch_slot=2)

    slides = group_slides([row, other, row])

    assert slides[0].member_ids == ('dup', 'other')


def test_rows_without_attachment_still_anchor_slides(make_row):
    slides = group_slides([make_row('text-only', content='Library closes at 6pm')])

    assert len(slides) == 1
    assert slides[0].anchor.attachment is None
    assert not slides[0].is_batch


def test_find_emergency_index(make_row):
    slides = group_slides([make_row('a'), make_row('b', priority=0), make_row('c', priority=0)])

    assert find_emergency_index(slides) == 1
    assert find_emergency_index(group_slides([make_row('a')])) is None


def test_signature_tracks_members(make_row):
    first = group_slides([make_row('a', batch_id='B'), make_row('b', batch_id='B')])
    second = group_slides([make_row('a', batch_id='B')])

    assert slides_signature(first) != slides_signature(second)


def test_visible_rows_window_and_active_flag(make_row):
    rows = [
        make_row('live'),
        make_row('inactive', is_active=False),
        make_row('future', start_at=NOW + timedelta(minutes=1)),
        make_row('expired', end_at=NOW),
        make_row('running', start_at=NOW - timedelta(hours=1), end_at=NOW + timedelta(hours=1)),
    ]

    visible = visible_rows(rows, now=NOW)

    assert [row.id for row in visible] == ['live', 'running']


def test_visible_rows_category_scope(make_row):
    rows = [
        make_row('sports', category='Sports'),
        make_row('exams', category='exams'),
        make_row('global'),
        make_row('alarm', category='exams', priority=0),
    ]

    assert [row.id for row in visible_rows(rows, NOW, 'sports')] == ['sports', 'global', 'alarm']
    assert [row.id for row in visible_rows(rows, NOW, 'library')] == ['global', 'alarm']
    assert len(visible_rows(rows, NOW, 'all')) == 4


def test_row_from_backend_payload():
    row = AnnouncementRow.from_dict({
        'id': 17,
        'title': ' Fire drill ',
        'priority': 2,
        'isEmergency': True,
        'image': '/uploads/drill.pdf',
        'fileName': 'drill.pdf',
        'fileMimeType': 'application/pdf',
        'fileSizeBytes': '2048',
        'displayBatchId': 'batch_01',
        'displayBatchSlot': 30,
        'liveStreamLinks': '["https://youtu.be/abcdefghijk", "not a url"]',
        'createdAt': '2026-03-01T10:00:00Z',
    })

    assert row.id == '17'
    assert row.title == 'Fire drill'
    assert row.is_emergency
    assert row.attachment.extension == 'pdf'
    assert row.attachment.size_bytes == 2048
    assert row.batch_id == 'batch_01'
    assert row.batch_slot is None
    assert row.live_stream_links == ('https://youtu.be/abcdefghijk',)
    assert row.created_at.tzinfo is not None
