"""
Unit tests for the CMS API client

Tests CMSApiClient with a mocked requests session.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import requests

from cmsv6_export.cms_client import (
    AuthenticationError,
    CMSApiClient,
    CMSResultError,
    ProtocolError,
    TransportError,
)
from tests.conftest import make_response

LOGIN = 'StandardApiAction_login.action'
FILE_INFO = 'StandardApiAction_getVideoFileInfc.action'
TASK = 'StandardApiAction_addDownloadTask.action'
DOWNLOAD = '/3/5'
TRACKS = 'StandardApiAction_queryTrackDetail.action'


def track_page(current, total, tracks):
    return make_response(json_data={
        'result': 0,
        'pagination': {'currentPage': current, 'totalPages': total, 'pageRecords': 2},
        'tracks': tracks,
    })


class TestSession:
    """Tests for lazy login and session reuse"""

    def test_login_happens_once_across_calls(self, client, gateway):
        gateway.add(FILE_INFO, make_response(json_data={'Files': []}))
        gateway.add(TRACKS, track_page(1, 1, []))

        start = datetime(2024, 1, 31, 10, 0, 0)
        end = datetime(2024, 1, 31, 10, 0, 5)
        client.get_video_file_info('10001', 0, start, end)
        client.get_video_file_info('10001', 1, start, end)
        client.get_track_detail('10001', 1, 100, start, end)

        assert len(gateway.calls_to(LOGIN)) == 1
        assert client.session_id == 'sess-1'
        for call in gateway.calls_to(FILE_INFO) + gateway.calls_to(TRACKS):
            assert dict(call['params'])['jsession'] == 'sess-1'

    def test_login_sends_credentials(self, client, gateway):
        client._ensure_session()
        call = gateway.calls_to(LOGIN)[0]
        assert call['method'] == 'POST'
        assert call['url'] == 'http://cms.example.com:8080/StandardApiAction_login.action'
        assert call['params'] == {'account': 'admin', 'password': 'secret'}

    def test_login_non_zero_result(self, cms_server, gateway):
        gateway.routes[LOGIN] = [make_response(json_data={'result': 5})]
        api = CMSApiClient(cms_server, http_session=gateway.session)

        with pytest.raises(AuthenticationError) as exc_info:
            api._ensure_session()

        assert "result=5" in str(exc_info.value)
        assert api.session_id is None

    def test_login_non_200(self, cms_server, gateway):
        gateway.routes[LOGIN] = [make_response(status_code=503, text='maintenance')]
        api = CMSApiClient(cms_server, http_session=gateway.session)

        with pytest.raises(AuthenticationError) as exc_info:
            api._ensure_session()

        assert exc_info.value.details['statusCode'] == 503

    def test_login_invalid_json(self, cms_server, gateway):
        gateway.routes[LOGIN] = [make_response(text='<html>login</html>')]
        api = CMSApiClient(cms_server, http_session=gateway.session)

        with pytest.raises(AuthenticationError):
            api._ensure_session()

    def test_login_connection_error(self, cms_server, gateway):
        gateway.routes[LOGIN] = [requests.ConnectionError("refused")]
        api = CMSApiClient(cms_server, http_session=gateway.session)

        with pytest.raises(TransportError):
            api._ensure_session()

    def test_reauthenticate_replaces_session(self, client, gateway):
        gateway.routes[LOGIN] = [
            make_response(json_data={'result': 0, 'jsession': 'sess-1'}),
            make_response(json_data={'result': 0, 'jsession': 'sess-2'}),
        ]
        assert client._ensure_session() == 'sess-1'
        assert client.reauthenticate() == 'sess-2'
        assert client.session_id == 'sess-2'

    def test_invalidate_session_forces_login(self, client, gateway):
        client._ensure_session()
        client.invalidate_session()
        client._ensure_session()
        assert len(gateway.calls_to(LOGIN)) == 2


class TestVideoFileInfo:
    """Tests for the video file lookup"""

    def test_request_parameters(self, client, gateway):
        gateway.add(FILE_INFO, make_response(json_data={
            'result': 0,
            'Files': [{'DownTaskUrl': 'http://x/task?a=1'}, {'DownTaskUrl': 'http://x/task?a=2'}],
        }))

        info = client.get_video_file_info(
            '10001', 2, datetime(2024, 1, 31, 10, 0, 0), datetime(2024, 1, 31, 10, 0, 5))

        assert [f.down_task_url for f in info.files] == ['http://x/task?a=1', 'http://x/task?a=2']
        call = gateway.calls_to(FILE_INFO)[0]
        assert call['method'] == 'POST'
        params = dict(call['params'])
        assert params['DevIDNO'] == '10001'
        assert params['CHN'] == 2
        assert (params['YEAR'], params['MON'], params['DAY']) == (2024, 1, 31)
        assert params['BEG'] == 36000
        assert params['END'] == 36005
        assert params['LOC'] == 1
        assert params['RECTYPE'] == -1
        assert params['FILEATTR'] == 2

    def test_lowercase_files_key(self, client, gateway):
        gateway.add(FILE_INFO, make_response(json_data={'files': [{'DownTaskUrl': 'http://x/t'}]}))
        info = client.get_video_file_info(
            '10001', 0, datetime(2024, 1, 31, 10, 0, 0), datetime(2024, 1, 31, 10, 0, 5))
        assert len(info.files) == 1

    def test_cross_midnight_rejected(self, client, gateway):
        with pytest.raises(ValueError):
            client.get_video_file_info(
                '10001', 0, datetime(2024, 1, 31, 23, 59, 58), datetime(2024, 2, 1, 0, 0, 3))
        assert gateway.calls == []

    def test_aware_times_converted_to_cms_timezone(self, cms_server, gateway):
        cms_server.timezone = '+05:00'
        gateway.add(FILE_INFO, make_response(json_data={'Files': []}))
        api = CMSApiClient(cms_server, http_session=gateway.session)

        api.get_video_file_info(
            '10001', 0,
            datetime(2024, 1, 31, 5, 0, 0, tzinfo=timezone.utc),
            datetime(2024, 1, 31, 5, 0, 5, tzinfo=timezone.utc))

        params = dict(gateway.calls_to(FILE_INFO)[0]['params'])
        assert params['BEG'] == 10 * 3600

    def test_non_200_raises_protocol_error(self, client, gateway):
        gateway.add(FILE_INFO, make_response(status_code=500, text='Internal Server Error'))

        with pytest.raises(ProtocolError) as exc_info:
            client.get_video_file_info(
                '10001', 0, datetime(2024, 1, 31, 10, 0, 0), datetime(2024, 1, 31, 10, 0, 5))

        assert exc_info.value.status_code == 500
        assert exc_info.value.body == 'Internal Server Error'

    def test_malformed_json_raises_protocol_error(self, client, gateway):
        gateway.add(FILE_INFO, make_response(text='not json'))

        with pytest.raises(ProtocolError):
            client.get_video_file_info(
                '10001', 0, datetime(2024, 1, 31, 10, 0, 0), datetime(2024, 1, 31, 10, 0, 5))

    @patch('cmsv6_export.metrics.record_request')
    def test_malformed_json_counted_as_error(self, record, client, gateway):
        gateway.add(FILE_INFO, make_response(text='not json'))

        with pytest.raises(ProtocolError):
            client.get_video_file_info(
                '10001', 0, datetime(2024, 1, 31, 10, 0, 0), datetime(2024, 1, 31, 10, 0, 5))

        outcomes = [c.args[1] for c in record.call_args_list if c.args[0] == 'getVideoFileInfc']
        assert outcomes == ['protocol_error']
        assert client.get_stats()['errors'] == 1

    @patch('cmsv6_export.metrics.record_request')
    def test_non_object_json_counted_as_error(self, record, client, gateway):
        gateway.add(FILE_INFO, make_response(json_data=[1, 2, 3]))

        with pytest.raises(ProtocolError):
            client.get_video_file_info(
                '10001', 0, datetime(2024, 1, 31, 10, 0, 0), datetime(2024, 1, 31, 10, 0, 5))

        outcomes = [c.args[1] for c in record.call_args_list if c.args[0] == 'getVideoFileInfc']
        assert outcomes == ['protocol_error']
        assert client.get_stats()['errors'] == 1

    @patch('cmsv6_export.metrics.record_request')
    def test_success_counted_once(self, record, client, gateway):
        gateway.add(FILE_INFO, make_response(json_data={'Files': []}))

        client.get_video_file_info(
            '10001', 0, datetime(2024, 1, 31, 10, 0, 0), datetime(2024, 1, 31, 10, 0, 5))

        outcomes = [c.args[1] for c in record.call_args_list if c.args[0] == 'getVideoFileInfc']
        assert outcomes == ['ok']

    def test_timeout_raises_transport_error(self, client, gateway):
        gateway.add(FILE_INFO, requests.Timeout("read timed out"))

        with pytest.raises(TransportError):
            client.get_video_file_info(
                '10001', 0, datetime(2024, 1, 31, 10, 0, 0), datetime(2024, 1, 31, 10, 0, 5))


class TestDownloadTask:
    """Tests for the export status request"""

    def test_reencodes_allow_listed_params(self, client, gateway, task_url):
        gateway.add(TASK, make_response(json_data={
            'result': 11, 'oldTaskAll': {'dph': '/a/b/c/video123.h264', 'len': 4096}}))

        task = client.get_download_task(task_url)

        assert task.is_ready
        assert task.file_path == '/a/b/c/video123.h264'
        assert task.length == 4096
        call = gateway.calls_to(TASK)[0]
        assert call['method'] == 'GET'
        assert call['url'] == 'http://cms.example.com:8080/StandardApiAction_addDownloadTask.action'
        names = [name for name, _ in call['params']]
        assert names == ['jsession', 'did', 'fbtm', 'fetm', 'sbtm', 'setm',
                         'fph', 'vtp', 'len', 'chn', 'dtp']
        assert dict(call['params'])['fbtm'] == '2024-01-31 10:00:00'

    def test_pending_status(self, client, gateway, task_url):
        gateway.add(TASK, make_response(json_data={'result': 0}))
        task = client.get_download_task(task_url)
        assert task.is_pending
        assert not task.is_ready
        assert task.file_path == ''

    def test_missing_jsession_uses_client_session(self, client, gateway):
        gateway.add(TASK, make_response(json_data={'result': 0}))
        client.get_download_task('http://cms.example.com:8080/StandardApiAction_addDownloadTask.action?did=1')
        params = gateway.calls_to(TASK)[0]['params']
        assert params == [('jsession', 'sess-1'), ('did', '1')]


class TestDownload:
    """Tests for the file download"""

    def test_writes_body_to_last_path_segment(self, client, gateway, tmp_path, monkeypatch):
        body = bytes(range(256)) * 16
        gateway.add(DOWNLOAD, make_response(content=body))
        monkeypatch.chdir(tmp_path)

        path = client.download('10001', 4096, '/a/b/c/video123.h264')

        assert path == 'video123.h264'
        assert (tmp_path / 'video123.h264').read_bytes() == body
        call = gateway.calls_to(DOWNLOAD)[0]
        assert call['url'] == 'http://cms.example.com:6609/3/5'
        params = call['params']
        assert params[0] == ('DownType', 3)
        assert dict(params) == {
            'DownType': 3,
            'jsession': 'sess-1',
            'DevIDNO': '10001',
            'FILELOC': 1,
            'FLENGTH': 4096,
            'FOFFSET': 0,
            'MTYPE': 1,
            'FPATH': '/a/b/c/video123.h264',
            'SAVENAME': 'video123.h264',
        }

    def test_output_dir(self, client, gateway, tmp_path):
        gateway.add(DOWNLOAD, make_response(content=b'abc'))
        path = client.download('10001', 3, 'D:\\rec\\ch1\\clip.264', output_dir=str(tmp_path))
        assert path == str(tmp_path / 'clip.264')
        assert (tmp_path / 'clip.264').read_bytes() == b'abc'

    def test_length_mismatch_is_not_an_error(self, client, gateway, tmp_path):
        gateway.add(DOWNLOAD, make_response(content=b'short'))
        path = client.download('10001', 4096, '/a/video.h264', output_dir=str(tmp_path))
        assert (tmp_path / 'video.h264').read_bytes() == b'short'
        assert path.endswith('video.h264')

    def test_path_traversal_name_rejected(self, client, gateway, tmp_path):
        with pytest.raises(ValueError):
            client.download('10001', 1, '/a/b/..', output_dir=str(tmp_path))
        assert gateway.calls_to(DOWNLOAD) == []

    def test_non_200_raises_protocol_error(self, client, gateway, tmp_path):
        gateway.add(DOWNLOAD, make_response(status_code=404, text='no file'))

        with pytest.raises(ProtocolError) as exc_info:
            client.download('10001', 1, '/a/video.h264', output_dir=str(tmp_path))

        assert exc_info.value.status_code == 404
        assert not (tmp_path / 'video.h264').exists()

    def test_unwritable_directory_raises_oserror(self, client, gateway, tmp_path):
        gateway.add(DOWNLOAD, make_response(content=b'abc'))
        with pytest.raises(OSError):
            client.download('10001', 3, '/a/video.h264', output_dir=str(tmp_path / 'missing'))


    def test_connection_lost_mid_body(self, client, gateway, tmp_path):
        def interrupted(chunk_size=None):
            yield b'partial'
            raise requests.exceptions.ChunkedEncodingError("Connection broken: IncompleteRead")

        response = make_response(content=b'partial')
        response.iter_content.side_effect = interrupted
        gateway.add(DOWNLOAD, response)

        with pytest.raises(TransportError) as exc_info:
            client.download('10001', 4096, '/a/video.h264', output_dir=str(tmp_path))

        assert exc_info.value.details['written'] == 7
        assert not (tmp_path / 'video.h264').exists()
        assert client.get_stats()['errors'] == 1
        response.close.assert_called_once()


class TestTrackDetail:
    """Tests for GPS track lookup"""

    def test_page_two_of_three(self, client, gateway):
        gateway.add(TRACKS, track_page(2, 3, [
            {'id': '10001', 'lng': 113827278, 'lat': 22654321, 'sp': 455, 's1': 3,
             'gt': '2024-01-31 10:00:05'},
        ]))

        page = client.get_track_detail('10001', 2, 2,
                                       datetime(2024, 1, 31, 0, 0, 0), datetime(2024, 1, 31, 23, 59, 59))

        assert page.pagination.current_page == 2
        assert page.pagination.total_pages == 3
        assert len(page.tracks) == 1
        record = page.tracks[0]
        assert record.lng == 113827278
        assert record.longitude == pytest.approx(113.827278)
        assert record.latitude == pytest.approx(22.654321)
        assert record.speed_kmh == pytest.approx(45.5)
        assert record.acc_on is True
        assert record.gps_time == datetime(2024, 1, 31, 10, 0, 5)

        params = dict(gateway.calls_to(TRACKS)[0]['params'])
        assert params['devIdno'] == '10001'
        assert params['begintime'] == '2024-01-31 00:00:00'
        assert params['endtime'] == '2024-01-31 23:59:59'
        assert params['currentPage'] == 2
        assert params['pageRecords'] == 2

    def test_page_beyond_total_is_empty(self, client, gateway):
        gateway.add(TRACKS, track_page(4, 3, []))
        page = client.get_track_detail('10001', 4, 2,
                                       datetime(2024, 1, 31, 0, 0, 0), datetime(2024, 1, 31, 1, 0, 0))
        assert page.tracks == []

    def test_top_level_pagination_fields(self, client, gateway):
        gateway.add(TRACKS, make_response(json_data={
            'result': 0, 'currentPage': 1, 'totalPages': 7, 'tracks': []}))
        page = client.get_track_detail('10001', 1, 2,
                                       datetime(2024, 1, 31, 0, 0, 0), datetime(2024, 1, 31, 1, 0, 0))
        assert page.pagination.total_pages == 7

    def test_iter_track_records_walks_all_pages(self, client, gateway):
        gateway.add(
            TRACKS,
            track_page(1, 3, [{'id': 'a', 'gt': '2024-01-31 00:00:01'}]),
            track_page(2, 3, [{'id': 'b', 'gt': '2024-01-31 00:00:02'}]),
            track_page(3, 3, [{'id': 'c', 'gt': '2024-01-31 00:00:03'}]),
        )

        records = list(client.iter_track_records(
            '10001', datetime(2024, 1, 31, 0, 0, 0), datetime(2024, 1, 31, 1, 0, 0), page_size=1))

        assert [r.id for r in records] == ['a', 'b', 'c']
        pages = [dict(c['params'])['currentPage'] for c in gateway.calls_to(TRACKS)]
        assert pages == [1, 2, 3]

    def test_iter_track_records_respects_max_pages(self, client, gateway):
        gateway.add(TRACKS, track_page(1, 10, [{'id': 'a'}]))
        records = list(client.iter_track_records(
            '10001', datetime(2024, 1, 31, 0, 0, 0), datetime(2024, 1, 31, 1, 0, 0), max_pages=2))
        assert len(records) == 2
        assert len(gateway.calls_to(TRACKS)) == 2

    def test_iter_track_records_first_page_error(self, client, gateway):
        gateway.add(TRACKS, make_response(json_data={'result': 2}))
        with pytest.raises(CMSResultError) as exc_info:
            list(client.iter_track_records(
                '10001', datetime(2024, 1, 31, 0, 0, 0), datetime(2024, 1, 31, 1, 0, 0)))
        assert exc_info.value.result == 2

    def test_iter_track_records_later_page_error_stops(self, client, gateway):
        gateway.add(
            TRACKS,
            track_page(1, 3, [{'id': 'a'}]),
            make_response(json_data={'result': 100}),
        )
        records = list(client.iter_track_records(
            '10001', datetime(2024, 1, 31, 0, 0, 0), datetime(2024, 1, 31, 1, 0, 0)))
        assert [r.id for r in records] == ['a']
