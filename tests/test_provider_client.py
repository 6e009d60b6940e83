"""Provider client tests with a stubbed requests session."""

import hashlib
import hmac
import json
from unittest.mock import MagicMock

import jwt
import pytest
import requests
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from core.exceptions import InvalidInput, ProviderRejected, ProviderUnavailable
from services.provider_client import ProviderClient, normalize_asset

NOW = 1_700_000_000


def make_response(status_code=200, payload=None):
    response = MagicMock(spec=requests.Response)
    response.status_code = status_code
    response.content = json.dumps(payload).encode() if payload is not None else b''
    response.text = response.content.decode()
    response.json.return_value = payload
    return response


@pytest.fixture(scope='module')
def rsa_key():
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()
    public_pem = key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


@pytest.fixture
def session():
    return MagicMock(name='session')


@pytest.fixture
def client(session, rsa_key):
    private_pem, _ = rsa_key
    return ProviderClient(
        token_id='token-id',
        token_secret='token-secret',
        webhook_secret='whsec',
        signing_key_id='key-1',
        signing_key_private=private_pem,
        base_url='https://api.provider.test',
        session=session,
        sleep=lambda _: None,
        clock=lambda: NOW,
    )


class TestRequests:
    def test_unconfigured_client_is_unavailable(self, session):
        client = ProviderClient(token_id='', token_secret='', session=session, sleep=lambda _: None)

        with pytest.raises(ProviderUnavailable):
            client.get_asset('asset-1')
        session.request.assert_not_called()

    def test_get_asset_normalizes_payload(self, client, session):
        session.request.return_value = make_response(payload={'data': {
            'id': 'asset-1',
            'status': 'ready',
            'playback_ids': [{'id': 'pb-1', 'policy': 'signed'}],
            'duration': 12.5,
            'passthrough': '{"lessonId": "l1"}',
        }})

        asset = client.get_asset('asset-1')

        assert asset['asset_id'] == 'asset-1'
        assert asset['playback_ids'] == [{'id': 'pb-1', 'policy': 'signed'}]
        assert asset['passthrough'] == {'lessonId': 'l1'}
        method, url = session.request.call_args[0]
        assert (method, url) == ('GET', 'https://api.provider.test/video/v1/assets/asset-1')
        assert session.request.call_args[1]['auth'] == ('token-id', 'token-secret')

    def test_server_errors_are_retried_then_raised(self, client, session):
        session.request.return_value = make_response(503, {'error': {}})

        with pytest.raises(ProviderUnavailable):
            client.get_asset('asset-1')
        assert session.request.call_count == 3

    def test_client_errors_are_rejected_without_retry(self, client, session):
        session.request.return_value = make_response(400, {'error': {'messages': ['bad cors origin']}})

        with pytest.raises(ProviderRejected, match='bad cors origin'):
            client.create_direct_upload()
        assert session.request.call_count == 1

    def test_connection_errors_are_unavailable(self, client, session):
        session.request.side_effect = requests.ConnectionError('refused')

        with pytest.raises(ProviderUnavailable):
            client.get_upload('up-1')

    def test_direct_upload_sends_policy_and_passthrough(self, client, session):
        session.request.return_value = make_response(201, {'data': {
            'id': 'up-1', 'url': 'https://upload.test/put', 'status': 'waiting', 'timeout': 3600,
        }})

        upload = client.create_direct_upload(passthrough={'lessonId': 'l1'})

        body = session.request.call_args[1]['json']
        assert body['new_asset_settings']['playback_policy'] == ['signed']
        assert json.loads(body['new_asset_settings']['passthrough']) == {'lessonId': 'l1'}
        assert upload['upload_id'] == 'up-1'
        assert upload['upload_url'] == 'https://upload.test/put'

    def test_unknown_playback_policy_is_invalid(self, client):
        with pytest.raises(InvalidInput):
            client.create_direct_upload(playback_policy='drm')


class TestDeleteAsset:
    def test_delete_counts_attempts(self, client, session):
        session.request.side_effect = [make_response(503, {}), make_response(204)]

        result = client.delete_asset('asset-1')

        assert result['success'] is True
        assert result['attempts'] == 2
        assert result['already_deleted'] is False

    def test_missing_asset_counts_as_deleted(self, client, session):
        session.request.return_value = make_response(404, {'error': {'messages': ['Not found']}})

        result = client.delete_asset('asset-1')

        assert result['success'] is True
        assert result['already_deleted'] is True

    def test_bulk_delete_reports_failures(self, client, session):
        def respond(method, url, **kwargs):
            if url.endswith('/bad'):
                return make_response(400, {'error': {'messages': ['locked']}})
            return make_response(204)

        session.request.side_effect = respond

        summary = client.bulk_delete_assets(['a', 'bad', 'c'], batch_size=2, delay=0)

        assert summary['total'] == 3
        assert summary['deleted'] == 2
        assert summary['failed'] == 1


class TestPlaybackTokens:
    def test_token_claims_and_lifetime(self, client, rsa_key):
        _, public_pem = rsa_key

        token = client.generate_playback_token('pb-1', expires_in=600)

        claims = jwt.decode(token, public_pem, algorithms=['RS256'], audience='video',
                            options={'verify_exp': False})
        assert claims['sub'] == 'pb-1'
        assert claims['exp'] - claims['iat'] == 600
        assert jwt.get_unverified_header(token)['kid'] == 'key-1'

    def test_default_lifetime_depends_on_audience(self, client, rsa_key):
        _, public_pem = rsa_key

        token = client.generate_playback_token('pb-1', token_type='thumbnail')

        claims = jwt.decode(token, public_pem, algorithms=['RS256'], audience='thumbnail',
                            options={'verify_exp': False})
        assert claims['exp'] - claims['iat'] == 604800

    def test_signed_playback_url_carries_token(self, client):
        url = client.playback_url('pb-1', policy='signed', expires_in=60)

        assert url.startswith('https://stream.mux.com/pb-1.m3u8?token=')

    def test_public_urls_have_no_token(self, client):
        assert client.playback_url('pb-1') == 'https://stream.mux.com/pb-1.m3u8'
        assert 'token=' not in client.thumbnail_url('pb-1')

    def test_missing_playback_id_is_invalid(self, client):
        with pytest.raises(InvalidInput):
            client.generate_playback_token('')


class TestWebhookSignature:
    def sign(self, body, timestamp=NOW, secret='whsec'):
        digest = hmac.new(secret.encode(), f"{timestamp}.".encode() + body, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={digest}"

    def test_valid_signature(self, client):
        body = b'{"type": "video.asset.ready"}'

        assert client.verify_webhook_signature(body, self.sign(body)) is True

    def test_tampered_body_is_rejected(self, client):
        header = self.sign(b'{"type": "video.asset.ready"}')

        assert client.verify_webhook_signature(b'{"type": "video.asset.errored"}', header) is False

    def test_stale_timestamp_is_rejected(self, client):
        body = b'{}'

        assert client.verify_webhook_signature(body, self.sign(body, timestamp=NOW - 3600)) is False

    @pytest.mark.parametrize('header', [None, '', 'garbage', 't=abc,v1=00'])
    def test_malformed_headers_are_rejected(self, client, header):
        assert client.verify_webhook_signature(b'{}', header) is False


class TestErrorClassification:
    @pytest.mark.parametrize('errors,expected', [
        (None, False),
        ({'type': 'invalid_input', 'messages': []}, True),
        ({'type': 'other', 'messages': ['File is corrupt']}, True),
        ({'type': 'other', 'messages': ['Temporary glitch']}, False),
        (['unsupported codec'], True),
    ])
    def test_is_error_critical(self, errors, expected):
        assert ProviderClient.is_error_critical(errors) is expected


class TestWaitForAssetReady:
    def test_returns_once_ready(self, client, session):
        sleeps = []
        client.sleep = sleeps.append
        session.request.side_effect = [
            make_response(payload={'data': {'id': 'asset-1', 'status': 'preparing'}}),
            make_response(payload={'data': {
                'id': 'asset-1', 'status': 'ready', 'playback_ids': [{'id': 'pb-1', 'policy': 'signed'}],
            }}),
        ]

        asset = client.wait_for_asset_ready('asset-1', max_attempts=5, poll_interval=7)

        assert asset['status'] == 'ready'
        assert sleeps == [7]

    def test_errored_asset_is_rejected(self, client, session):
        session.request.return_value = make_response(payload={'data': {
            'id': 'asset-1', 'status': 'errored', 'errors': {'type': 'other', 'messages': ['glitch']},
        }})

        with pytest.raises(ProviderRejected) as excinfo:
            client.wait_for_asset_ready('asset-1', max_attempts=5)
        assert excinfo.value.details['errors'] == {'type': 'other', 'messages': ['glitch']}
        assert session.request.call_count == 1

    def test_never_ready_is_unavailable(self, client, session):
        session.request.return_value = make_response(payload={'data': {'id': 'asset-1', 'status': 'preparing'}})

        with pytest.raises(ProviderUnavailable):
            client.wait_for_asset_ready('asset-1', max_attempts=3, poll_interval=0)
        assert session.request.call_count == 3


def test_normalize_asset_handles_empty_payload():
    asset = normalize_asset(None)

    assert asset['asset_id'] is None
    assert asset['playback_ids'] == []
