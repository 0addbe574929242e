import threading
import time
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler

from models import Attachment, LiveState, LiveStatus, MediaKind
from utils.display_controller import DECODE_JOB, DOCUMENT_TIMER, SLIDE_TIMER, STATE_EVENT, DisplayController
from utils.document_decoder import OFFICE_VIEWER_URL
from utils.timers import TimerRegistry

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
NOTES = '\n'.join(f'Exam hall line {i}' for i in range(60)).encode('utf-8')


def text_attachment(path, **kwargs):
    return Attachment(path=path, mime_type='text/plain', **kwargs)


def decode_pending(timers):
    return any(name.startswith(DECODE_JOB) for name in timers.jobs)


def test_empty_display(controller, timers):
    snapshot = controller.snapshot()

    assert snapshot['hint'] == 'No scheduled announcements'
    assert snapshot['slide'] is None
    assert snapshot['panel']['tiles'] == []
    assert not timers.is_armed(SLIDE_TIMER)


def test_rotation_timer_walks_slides(controller, timers, make_row):
    controller.replace_rows([make_row('a'), make_row('b'), make_row('c')])
    assert controller.snapshot()['hint'] == 'Slide 1 of 3'
    assert timers.interval(SLIDE_TIMER) == 8
    assert not timers.is_armed(DOCUMENT_TIMER)

    timers.fire(SLIDE_TIMER)
    timers.fire(SLIDE_TIMER)

    snapshot = controller.snapshot()
    assert snapshot['hint'] == 'Slide 3 of 3'
    assert snapshot['slide']['key'] == 'row:c'


def test_state_changes_are_broadcast(controller, make_row):
    events = []
    controller.emit = lambda event, data: events.append((event, data['slide_index']))

    controller.replace_rows([make_row('a'), make_row('b')])
    controller.next()

    assert events == [(STATE_EVENT, 0), (STATE_EVENT, 1)]


def test_pause_disarms_slide_timer(controller, timers, make_row):
    controller.replace_rows([make_row('a'), make_row('b')])

    controller.pause()
    assert not timers.is_armed(SLIDE_TIMER)
    assert controller.next()['slide_index'] == 1

    controller.play()
    assert timers.is_armed(SLIDE_TIMER)


def test_document_decode_then_paced_by_pages(controller, backend, timers, make_row):
    backend.files['/u/notes.txt'] = (NOTES, 'text/plain')
    controller.replace_rows([make_row('doc', attachment=text_attachment('/u/notes.txt')), make_row('next')])

    assert controller.snapshot()['document']['status'] == 'loading'
    assert decode_pending(timers)
    assert timers.is_armed(SLIDE_TIMER)

    timers.run_submitted()

    document = controller.snapshot()['document']
    assert document['status'] == 'ready'
    assert document['page_count'] == 3
    assert document['page']['kind'] == 'text'
    assert document['label'].startswith('TXT')
    assert not timers.is_armed(SLIDE_TIMER)
    assert timers.interval(DOCUMENT_TIMER) == 8

    pages = []
    for _ in range(5):
        timers.fire(DOCUMENT_TIMER)
        pages.append(controller.snapshot()['document']['page_index'])
    assert pages == [1, 2, 0, 1, 2]

    timers.fire(DOCUMENT_TIMER)

    snapshot = controller.snapshot()
    assert snapshot['slide']['key'] == 'row:next'
    assert snapshot['document']['status'] == 'none'
    assert timers.is_armed(SLIDE_TIMER)
    assert not timers.is_armed(DOCUMENT_TIMER)


def test_decoded_pages_are_cached_per_version(controller, backend, timers, make_row):
    backend.files['/u/notes.txt'] = (NOTES, 'text/plain')
    controller.replace_rows([make_row('doc', attachment=text_attachment('/u/notes.txt')), make_row('next')])
    timers.run_submitted()

    controller.next()
    controller.previous()

    assert controller.snapshot()['document']['status'] == 'ready'
    assert not decode_pending(timers)
    assert backend.fetched == ['/u/notes.txt']


def test_stale_decode_result_is_discarded(controller, backend, timers, make_row):
    backend.files['/u/first.txt'] = (b'first document', 'text/plain')
    backend.files['/u/second.txt'] = (b'second document', 'text/plain')
    controller.replace_rows([
        make_row('one', attachment=text_attachment('/u/first.txt')),
        make_row('two', attachment=text_attachment('/u/second.txt')),
    ])
    [stale_name] = [name for name in timers.jobs if name.startswith(DECODE_JOB)]
    _, _, stale_callback, stale_args = timers.jobs[stale_name]

    controller.next()

    assert stale_name not in timers.jobs
    assert stale_callback(*stale_args) is False
    assert controller.snapshot()['document']['status'] == 'loading'

    timers.run_submitted()

    document = controller.document_pages()
    assert document['status'] == 'ready'
    assert document['pages'][0]['text'] == 'second document'


def test_unreachable_attachment_reports_network_failure(controller, backend, timers, make_row):
    controller.replace_rows([make_row('doc', attachment=text_attachment('/u/missing.txt'))])

    timers.run_submitted()

    document = controller.snapshot()['document']
    assert document['status'] == 'error'
    assert document['error'] == 'network_failure'
    assert document['hint'] == 'Unable to load document.'
    assert document['url'] == 'http://backend.test/u/missing.txt'
    assert backend.fetched == ['/u/missing.txt']


def test_declared_size_over_ceiling_skips_download(controller, backend, timers, make_row):
    attachment = text_attachment('/u/huge.txt', size_bytes=50 * 1024 * 1024)
    controller.replace_rows([make_row('doc', attachment=attachment)])

    timers.run_submitted()

    document = controller.snapshot()['document']
    assert document['error'] == 'too_large'
    assert '50.0 MB' in document['hint']
    assert backend.fetched == []


def test_batch_slide_is_not_decoded(controller, timers, make_row):
    controller.replace_rows([
        make_row('a', batch_id='B', attachment=text_attachment('/u/a.txt')),
        make_row('b', batch_id='B'),
    ])

    assert not decode_pending(timers)
    assert controller.snapshot()['document']['status'] == 'none'


def test_office_online_preview_when_enabled(controller, timers, make_row):
    controller.config['OFFICE_ONLINE_PREVIEW'] = True

    controller.replace_rows([make_row('doc', attachment='/u/minutes.docx')])

    document = controller.snapshot()['document']
    assert document['status'] == 'ready'
    assert document['page']['kind'] == 'frame'
    assert document['page']['source'].startswith(OFFICE_VIEWER_URL)
    assert not decode_pending(timers)


def test_emergency_pins_and_disables_controls(controller, timers, make_row):
    controller.replace_rows([make_row('a'), make_row('b'), make_row('alarm', priority=0)])

    snapshot = controller.next()

    assert snapshot['emergency'] is True
    assert snapshot['slide']['key'] == 'row:alarm'
    assert controller.previous()['slide']['key'] == 'row:alarm'
    assert not timers.is_armed(SLIDE_TIMER)


def test_live_off_shows_slide_streams_only(controller, make_row):
    controller.apply_live_status(LiveStatus(status=LiveState.OFF, links=('https://youtu.be/ccccccccccc',)))
    controller.replace_rows([make_row('a', live_stream_links=(
        'https://youtu.be/aaaaaaaaaaa',
        'https://www.youtube.com/watch?v=bbbbbbbbbbb',
        'https://youtu.be/aaaaaaaaaaa?t=5',
    ))])

    snapshot = controller.snapshot()
    tiles = snapshot['panel']['tiles']

    assert [tile['kind'] for tile in tiles] == ['stream', 'stream', 'announcement']
    assert [tile['key'] for tile in tiles[:2]] == ['youtube:aaaaaaaaaaa', 'youtube:bbbbbbbbbbb']
    assert all('mute=1' in tile['embed_url'] for tile in tiles[:2])
    assert snapshot['live_active'] is False


def test_streams_spill_onto_extra_panel_pages(controller, timers, make_row):
    controller.apply_live_status(LiveStatus(status=LiveState.ON, links=(
        'https://youtu.be/aaaaaaaaaaa',
        'https://youtu.be/bbbbbbbbbbb',
        'https://youtu.be/ccccccccccc',
        'https://youtu.be/ddddddddddd',
    )))
    controller.replace_rows([make_row('a'), make_row('b')])

    snapshot = controller.snapshot()
    assert snapshot['panel']['page_count'] == 2
    assert len(snapshot['panel']['tiles']) == 4

    timers.fire(SLIDE_TIMER)

    snapshot = controller.snapshot()
    assert snapshot['slide']['key'] == 'row:a'
    assert snapshot['panel']['page_index'] == 1
    assert [tile['kind'] for tile in snapshot['panel']['tiles']] == ['announcement']


def test_media_timeout_retries_with_cache_busting(controller, timers, make_row):
    controller.replace_rows([make_row('a', attachment='/u/poster.jpg')])
    source = 'http://backend.test/u/poster.jpg'
    timer = controller.media.timer_name(source, MediaKind.IMAGE)
    assert timers.interval(timer) == 12

    timers.fire(timer)

    tile = controller.snapshot()['panel']['tiles'][0]
    assert tile['url'] == f'{source}?_retry=1'
    assert tile['load']['attempts'] == 1

    controller.report_media_loaded(source, MediaKind.IMAGE)

    assert controller.snapshot()['panel']['tiles'][0]['load']['status'] == 'loaded'
    assert not timers.is_armed(timer)


def test_media_supervision_follows_visible_slide(controller, timers, make_row):
    controller.replace_rows([make_row('a', attachment='/u/poster.jpg'), make_row('b')])
    timer = controller.media.timer_name('http://backend.test/u/poster.jpg', MediaKind.IMAGE)
    assert timers.is_armed(timer)

    controller.next()

    assert not timers.is_armed(timer)
    assert controller.snapshot()['media'] == []


def test_poll_failure_keeps_last_list(controller, backend, make_row):
    backend.rows = [make_row('a'), make_row('b')]
    assert controller.refresh_announcements() is True

    backend.offline = True

    assert controller.refresh_announcements() is False
    assert controller.refresh_live_status() is False
    assert controller.snapshot()['slide_count'] == 2


def test_refresh_all_pulls_rows_and_live_status(controller, backend, make_row):
    backend.rows = [make_row('a')]
    backend.live = LiveStatus(status=LiveState.ON, links=('https://vimeo.com/76979871',))

    controller.refresh_all()

    snapshot = controller.snapshot()
    assert snapshot['live_active'] is True
    assert snapshot['panel']['tiles'][0]['provider'] == 'vimeo'


def test_expired_rows_are_hidden(controller, make_row):
    controller.replace_rows([make_row('a', end_at=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)), make_row('b')])

    assert controller.snapshot()['slide_count'] == 1


def test_shutdown_disarms_everything(controller, timers, make_row):
    controller.replace_rows([make_row('a', attachment='/u/poster.jpg'), make_row('b')])

    controller.shutdown()

    assert timers.jobs == {}


def test_newer_decode_runs_while_older_one_is_in_flight(backend, monkeypatch, make_row):
    backend.files['/u/first.txt'] = (b'first document', 'text/plain')
    backend.files['/u/second.txt'] = (b'second document', 'text/plain')
    started, release = threading.Event(), threading.Event()
    fetch = backend.fetch_attachment

    def slow_fetch(path, max_bytes=None):
        if path == '/u/first.txt':
            started.set()
            release.wait(5)
        return fetch(path, max_bytes=max_bytes)

    monkeypatch.setattr(backend, 'fetch_attachment', slow_fetch)
    scheduler = BackgroundScheduler()
    timers = TimerRegistry(scheduler)
    timers.start()
    controller = DisplayController({}, backend, timers, clock=lambda: NOW)
    try:
        controller.replace_rows([
            make_row('one', attachment=text_attachment('/u/first.txt')),
            make_row('two', attachment=text_attachment('/u/second.txt')),
        ])
        assert started.wait(5)

        controller.next()
        deadline = time.monotonic() + 5
        while controller.document_pages()['status'] != 'ready' and time.monotonic() < deadline:
            time.sleep(0.05)
        release.set()

        document = controller.document_pages()
        assert document['status'] == 'ready'
        assert document['pages'][0]['text'] == 'second document'
    finally:
        release.set()
        controller.shutdown()
        scheduler.shutdown(wait=True)
