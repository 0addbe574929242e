import fitz

from app import create_app, socketio
from config import TestingConfig
from models import Attachment
from utils.display_controller import SLIDE_TIMER
from utils.event_bus import BackendEventBus
from utils.scheduler import shutdown_scheduler

POSTER = 'http://backend.test/u/poster.jpg'


def build_pdf(page_count):
    document = fitz.open()
    for number in range(1, page_count + 1):
        page = document.new_page()
        page.insert_text((72, 72), f'Bus timetable page {number}')
    data = document.tobytes()
    document.close()
    return data


def test_index(client):
    response = client.get('/')

    assert response.status_code == 200
    assert response.get_json()['state'] == '/api/display/state'


def test_unknown_route_is_json_404(client):
    response = client.get('/api/display/nope')

    assert response.status_code == 404
    assert response.get_json() == {'error': 'Not found'}


def test_state_and_manual_navigation(client, controller, make_row):
    controller.replace_rows([make_row('a'), make_row('b'), make_row('c')])

    assert client.get('/api/display/state').get_json()['hint'] == 'Slide 1 of 3'
    assert client.post('/api/display/next').get_json()['slide_index'] == 1
    assert client.post('/api/display/previous').get_json()['slide_index'] == 0
    assert client.post('/api/display/previous').get_json()['slide_index'] == 2


def test_playback_actions(client, controller, timers, make_row):
    controller.replace_rows([make_row('a'), make_row('b')])

    paused = client.post('/api/display/playback', json={'action': 'pause'})
    assert paused.get_json()['playing'] is False
    assert not timers.is_armed(SLIDE_TIMER)

    toggled = client.post('/api/display/playback', json={})
    assert toggled.get_json()['playing'] is True

    bad = client.post('/api/display/playback', json={'action': 'rewind'})
    assert bad.status_code == 400


def test_pages_readout(client, controller, backend, timers, make_row):
    assert client.get('/api/display/pages').get_json() == {'status': 'none', 'pages': []}

    backend.files['/u/menu.txt'] = (b'Soup of the day', 'text/plain')
    controller.replace_rows([make_row('menu', attachment=Attachment(path='/u/menu.txt', mime_type='text/plain'))])
    timers.run_submitted()

    data = client.get('/api/display/pages').get_json()
    assert data['status'] == 'ready'
    assert [page['label'] for page in data['pages']] == ['Page 1']


def test_pdf_page_render(client, controller, backend, timers, make_row):
    backend.files['/u/timetable.pdf'] = (build_pdf(2), 'application/pdf')
    attachment = Attachment(path='/u/timetable.pdf', mime_type='application/pdf')
    controller.replace_rows([make_row('pdf', attachment=attachment)])
    timers.run_submitted()

    document = controller.snapshot()['document']
    assert document['family'] == 'pdf'
    assert document['page']['source'].startswith('http://backend.test/u/timetable.pdf#page=1&')

    response = client.get('/api/display/pdf/pages/2?zoom=1')
    assert response.status_code == 200
    assert response.mimetype == 'image/png'
    assert response.data.startswith(b'\x89PNG')

    assert client.get('/api/display/pdf/pages/9').status_code == 404
    assert client.get('/api/display/pdf/pages/1?zoom=10').status_code == 400


def test_pdf_page_render_after_returning_to_cached_slide(client, controller, backend, timers, make_row):
    backend.files['/u/first.pdf'] = (build_pdf(1), 'application/pdf')
    backend.files['/u/second.pdf'] = (build_pdf(2), 'application/pdf')
    controller.replace_rows([
        make_row('one', attachment=Attachment(path='/u/first.pdf', mime_type='application/pdf')),
        make_row('two', attachment=Attachment(path='/u/second.pdf', mime_type='application/pdf')),
    ])
    timers.run_submitted()
    controller.next()
    timers.run_submitted()
    controller.previous()

    assert controller.snapshot()['document']['status'] == 'ready'
    response = client.get('/api/display/pdf/pages/1')
    assert response.status_code == 200
    assert response.data.startswith(b'\x89PNG')
    assert backend.fetched == ['/u/first.pdf', '/u/second.pdf']


def test_evicted_pdf_bytes_are_fetched_again(client, controller, backend, timers, make_row):
    backend.files['/u/timetable.pdf'] = (build_pdf(2), 'application/pdf')
    attachment = Attachment(path='/u/timetable.pdf', mime_type='application/pdf')
    controller.replace_rows([make_row('pdf', attachment=attachment)])
    timers.run_submitted()
    controller._pdf_cache.clear()

    response = client.get('/api/display/pdf/pages/2')

    assert response.status_code == 200
    assert response.data.startswith(b'\x89PNG')
    assert backend.fetched == ['/u/timetable.pdf', '/u/timetable.pdf']


def test_pdf_page_without_active_pdf(client):
    response = client.get('/api/display/pdf/pages/1')

    assert response.status_code == 404
    assert response.get_json()['error'] == 'empty_content'


def test_media_reports(client, controller, make_row):
    controller.replace_rows([make_row('a', attachment='/u/poster.jpg')])

    assert client.post('/api/display/media/error', json={'kind': 'image'}).status_code == 400
    assert client.post('/api/display/media/error', json={'source': POSTER, 'kind': 'pdf'}).status_code == 400
    unknown = client.post('/api/display/media/loaded', json={'source': 'http://x/y.png', 'kind': 'image'})
    assert unknown.status_code == 404

    retry = client.post('/api/display/media/error', json={'source': POSTER, 'kind': 'image', 'url': POSTER})
    assert retry.status_code == 200
    assert retry.get_json()['url'] == f'{POSTER}?_retry=1'

    loaded = client.post('/api/display/media/loaded', json={'source': POSTER, 'kind': 'image'})
    assert loaded.get_json()['status'] == 'loaded'


def test_refresh_and_health(client, backend, make_row):
    backend.rows = [make_row('a'), make_row('alarm', priority=0)]

    refreshed = client.post('/api/display/refresh')
    assert refreshed.get_json()['slide_count'] == 2

    health = client.get('/api/display/health').get_json()
    assert health['status'] == 'healthy'
    assert health['slides'] == 2
    assert health['emergency'] is True


def test_socket_clients_receive_state(app, controller, make_row):
    controller.replace_rows([make_row('a'), make_row('b')])
    socket_client = socketio.test_client(app)

    received = socket_client.get_received()
    assert received[0]['name'] == 'display_state'
    assert received[0]['args'][0]['slide_count'] == 2

    socket_client.emit('display_control', {'action': 'next'})
    states = [event['args'][0] for event in socket_client.get_received() if event['name'] == 'display_state']
    assert states[-1]['slide_index'] == 1

    socket_client.disconnect()


def test_teardown_is_registered_at_exit(backend, monkeypatch):
    registered = []
    monkeypatch.setattr('atexit.register', registered.append)
    monkeypatch.setattr(TestingConfig, 'EVENT_BUS_ENABLED', True)
    monkeypatch.setattr(BackendEventBus, 'start', lambda self: False)

    app = create_app('testing', feed=backend)
    try:
        assert registered[-3:] == [shutdown_scheduler, app.display_controller.shutdown, app.event_bus.stop]
    finally:
        for callback in reversed(registered):
            callback()
