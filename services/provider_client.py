"""
Managed video provider client for EduStream Backend
Typed facade over the provider REST API: direct uploads, assets,
signing keys, playback tokens and webhook signatures
"""

import base64
import hashlib
import hmac
import json
import logging
import threading
import time
from urllib.parse import urlencode

import jwt
import requests
from django.conf import settings
from django.utils import timezone

from core.exceptions import InvalidInput, ProviderRejected, ProviderUnavailable
from core.utils import chunked, with_retry

logger = logging.getLogger(__name__)

STREAM_BASE_URL = 'https://stream.mux.com'
IMAGE_BASE_URL = 'https://image.mux.com'

PLAYBACK_POLICIES = ('public', 'signed')

# Default token lifetimes per audience, in seconds
DEFAULT_TOKEN_TTLS = {
    'video': 86400,
    'thumbnail': 604800,
    'storyboard': 604800,
}

CRITICAL_ERROR_TYPES = {'invalid_input', 'encoding_error', 'download_error'}
CRITICAL_ERROR_KEYWORDS = ('corrupt', 'invalid', 'unsupported', 'failed permanently')

# Signing key provisioned at runtime when none is configured.
# Resolved once per process and never mutated afterwards.
_signing_key_lock = threading.Lock()
_resolved_signing_key = None


def parse_passthrough(value):
    """Decode a passthrough string back into a dict when it holds JSON"""
    if value is None or isinstance(value, dict):
        return value
    try:
        parsed = json.loads(value)
    except (TypeError, ValueError):
        return value
    return parsed if isinstance(parsed, dict) else value


def normalize_asset(data):
    """Convert a raw provider asset payload into the shape used by the services"""
    data = data or {}
    return {
        'asset_id': data.get('id'),
        'status': data.get('status'),
        'playback_ids': [
            {'id': item.get('id'), 'policy': item.get('policy')}
            for item in (data.get('playback_ids') or [])
        ],
        'duration': data.get('duration'),
        'aspect_ratio': data.get('aspect_ratio'),
        'max_stored_resolution': data.get('max_stored_resolution'),
        'max_stored_frame_rate': data.get('max_stored_frame_rate'),
        'tracks': data.get('tracks') or [],
        'errors': data.get('errors'),
        'passthrough': parse_passthrough(data.get('passthrough')),
        'upload_id': data.get('upload_id'),
        'created_at': data.get('created_at'),
    }


def _decode_private_key(value):
    """Private keys are stored base64-encoded; raw PEM is accepted as well"""
    if isinstance(value, bytes):
        value = value.decode('utf-8')
    value = value.strip()
    if value.startswith('-----BEGIN'):
        return value.encode('utf-8')
    try:
        return base64.b64decode(value)
    except (ValueError, TypeError) as e:
        raise InvalidInput("Signing key private material is not valid base64") from e


def _is_not_found(error):
    details = getattr(error, 'details', None) or {}
    if details.get('status') == 404:
        return True
    return 'not found' in str(error).lower()


class ProviderClient:
    """Client for the managed video provider"""

    def __init__(self, token_id=None, token_secret=None, webhook_secret=None,
                 signing_key_id=None, signing_key_private=None, base_url=None,
                 timeout=None, playback_policy=None, session=None,
                 sleep=time.sleep, clock=time.time):
        self.token_id = token_id if token_id is not None else getattr(settings, 'VIDEO_PROVIDER_TOKEN_ID', '')
        self.token_secret = token_secret if token_secret is not None else getattr(settings, 'VIDEO_PROVIDER_TOKEN_SECRET', '')
        self.webhook_secret = webhook_secret if webhook_secret is not None else getattr(
            settings, 'VIDEO_PROVIDER_WEBHOOK_SECRET', ''
        )
        self.signing_key_id = signing_key_id if signing_key_id is not None else getattr(
            settings, 'VIDEO_PROVIDER_SIGNING_KEY_ID', ''
        )
        self.signing_key_private = signing_key_private if signing_key_private is not None else getattr(
            settings, 'VIDEO_PROVIDER_SIGNING_KEY_PRIVATE', ''
        )
        self.base_url = (base_url or getattr(settings, 'VIDEO_PROVIDER_API_URL', 'https://api.mux.com')).rstrip('/')
        self.timeout = timeout or getattr(settings, 'VIDEO_PROVIDER_TIMEOUT', 30)
        self.default_playback_policy = playback_policy or getattr(settings, 'VIDEO_PROVIDER_PLAYBACK_POLICY', 'signed')
        self.webhook_tolerance = getattr(settings, 'VIDEO_WEBHOOK_TOLERANCE_SECONDS', 300)
        self.max_attempts = 3
        self.backoff_base = 2
        self.session = session or requests.Session()
        self.sleep = sleep
        self.clock = clock

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def is_configured(self):
        return bool(self.token_id and self.token_secret)

    def get_config(self):
        """Configuration summary that never exposes secrets"""
        return {
            'configured': self.is_configured(),
            'api_url': self.base_url,
            'playback_policy': self.default_playback_policy,
            'has_webhook_secret': bool(self.webhook_secret),
            'has_signing_key': bool(self.signing_key_id and self.signing_key_private),
            'timeout': self.timeout,
        }

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _request(self, method, path, body=None):
        """Single HTTP call mapped onto the provider error kinds"""
        if not self.is_configured():
            raise ProviderUnavailable("Video provider credentials are not configured")

        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=body,
                auth=(self.token_id, self.token_secret),
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise ProviderUnavailable(f"Video provider unreachable: {str(e)}") from e
        except requests.RequestException as e:
            raise ProviderUnavailable(f"Video provider request failed: {str(e)}") from e

        status_code = response.status_code
        if status_code == 429 or status_code >= 500:
            raise ProviderUnavailable(
                f"Video provider returned {status_code} for {method} {path}",
                details={'status': status_code},
            )

        if status_code >= 400:
            try:
                error_body = response.json()
            except ValueError:
                error_body = {'raw': response.text}
            messages = (error_body.get('error') or {}).get('messages') if isinstance(error_body, dict) else None
            message = '; '.join(messages) if messages else f"Video provider rejected {method} {path}"
            raise ProviderRejected(message, details={'status': status_code, 'body': error_body})

        if status_code == 204 or not response.content:
            return {}

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderUnavailable("Video provider returned a malformed response") from e
        return payload.get('data', payload) if isinstance(payload, dict) else payload

    def _call(self, method, path, body=None):
        """HTTP call with exponential backoff on transient failures"""
        retrying = with_retry(
            max_attempts=self.max_attempts,
            base=self.backoff_base,
            retry_on=(ProviderUnavailable,),
            sleep=self.sleep,
        )
        return retrying(self._request)(method, path, body)

    # ------------------------------------------------------------------
    # Uploads and assets
    # ------------------------------------------------------------------

    def create_direct_upload(self, cors_origin='*', playback_policy=None, passthrough=None,
                             mp4_support='none', normalize_audio=True, test=False):
        """Create a direct upload URL accepting a PUT of the raw video bytes"""
        policy = playback_policy or self.default_playback_policy
        if policy not in PLAYBACK_POLICIES:
            raise InvalidInput(f"Unsupported playback policy: {policy}")

        new_asset_settings = {
            'playback_policy': [policy],
            'mp4_support': mp4_support,
            'normalize_audio': normalize_audio,
        }
        if passthrough:
            new_asset_settings['passthrough'] = json.dumps(passthrough, default=str)

        body = {'cors_origin': cors_origin, 'new_asset_settings': new_asset_settings}
        if test:
            body['test'] = True

        data = self._call('POST', '/video/v1/uploads', body)
        logger.info(f"Created direct upload {data.get('id')} with {policy} playback")
        return {
            'upload_id': data.get('id'),
            'upload_url': data.get('url'),
            'status': data.get('status'),
            'timeout_seconds': data.get('timeout'),
            'cors_origin': data.get('cors_origin', cors_origin),
        }

    def get_upload(self, upload_id):
        """Direct upload status; ``asset_id`` appears once the bytes are ingested"""
        if not upload_id:
            raise InvalidInput("Upload id is required")

        data = self._call('GET', f'/video/v1/uploads/{upload_id}')
        return {
            'upload_id': data.get('id', upload_id),
            'status': data.get('status'),
            'asset_id': data.get('asset_id'),
            'error': data.get('error'),
        }

    def cancel_upload(self, upload_id):
        data = self._call('PUT', f'/video/v1/uploads/{upload_id}/cancel')
        return {'upload_id': upload_id, 'status': data.get('status', 'cancelled')}

    def get_asset(self, asset_id):
        """Asset details including status and playback ids"""
        if not asset_id:
            raise InvalidInput("Asset id is required")

        data = self._call('GET', f'/video/v1/assets/{asset_id}')
        return normalize_asset(data)

    def delete_asset(self, asset_id, max_attempts=3):
        """
        Delete an asset with retries.

        Idempotent: an asset the provider no longer knows about counts as
        deleted.
        """
        if not asset_id:
            raise InvalidInput("Asset id is required")

        attempts = 0

        def _delete():
            nonlocal attempts
            attempts += 1
            return self._request('DELETE', f'/video/v1/assets/{asset_id}')

        retrying = with_retry(
            max_attempts=max_attempts,
            base=self.backoff_base,
            retry_on=(ProviderUnavailable,),
            sleep=self.sleep,
        )
        try:
            retrying(_delete)()
        except ProviderRejected as e:
            if not _is_not_found(e):
                raise
            logger.info(f"Asset {asset_id} already deleted")
            return {
                'success': True,
                'asset_id': asset_id,
                'attempts': attempts,
                'already_deleted': True,
                'message': 'Asset already deleted',
            }

        logger.info(f"Deleted asset {asset_id} after {attempts} attempt(s)")
        return {
            'success': True,
            'asset_id': asset_id,
            'attempts': attempts,
            'already_deleted': False,
            'deleted_at': timezone.now().isoformat(),
        }

    def bulk_delete_assets(self, asset_ids, batch_size=5, delay=0.5):
        """Delete many assets in small batches with a pause between batches"""
        results = []
        batches = chunked(asset_ids, batch_size)
        for index, batch in enumerate(batches):
            for asset_id in batch:
                try:
                    outcome = self.delete_asset(asset_id)
                    results.append({'asset_id': asset_id, 'success': True, 'attempts': outcome['attempts']})
                except (ProviderRejected, ProviderUnavailable) as e:
                    logger.error(f"Failed to delete asset {asset_id}: {str(e)}")
                    results.append({'asset_id': asset_id, 'success': False, 'error': str(e)})
            if index < len(batches) - 1:
                self.sleep(delay)

        deleted = sum(1 for r in results if r['success'])
        return {
            'total': len(results),
            'deleted': deleted,
            'failed': len(results) - deleted,
            'results': results,
        }

    def wait_for_asset_ready(self, asset_id, max_attempts=60, poll_interval=5):
        """Poll an asset until it is ready; raises when it errors or never settles"""
        for attempt in range(1, max_attempts + 1):
            asset = self.get_asset(asset_id)
            if asset['status'] == 'ready':
                return asset
            if asset['status'] == 'errored':
                raise ProviderRejected(
                    f"Asset {asset_id} failed processing",
                    details={'errors': asset.get('errors')},
                )
            logger.debug(f"Asset {asset_id} is {asset['status']} (poll {attempt}/{max_attempts})")
            if attempt < max_attempts:
                self.sleep(poll_interval)

        raise ProviderUnavailable(f"Asset {asset_id} was not ready after {max_attempts} polls")

    @staticmethod
    def is_error_critical(errors):
        """Whether an asset error payload describes a permanent failure"""
        if not errors:
            return False
        if isinstance(errors, dict):
            if errors.get('type') in CRITICAL_ERROR_TYPES:
                return True
            messages = errors.get('messages') or []
        elif isinstance(errors, (list, tuple)):
            messages = errors
        else:
            messages = [errors]

        text = ' '.join(str(message) for message in messages).lower()
        return any(keyword in text for keyword in CRITICAL_ERROR_KEYWORDS)

    # ------------------------------------------------------------------
    # Signing keys and playback tokens
    # ------------------------------------------------------------------

    def list_signing_keys(self):
        data = self._call('GET', '/system/v1/signing-keys')
        return [{'id': item.get('id'), 'created_at': item.get('created_at')} for item in (data or [])]

    def create_signing_key(self):
        data = self._call('POST', '/system/v1/signing-keys')
        return {'id': data.get('id'), 'private_key': data.get('private_key')}

    def _get_signing_key(self):
        """Return ``(key_id, private_pem)`` used for RS256 playback tokens"""
        if self.signing_key_id and self.signing_key_private:
            return self.signing_key_id, _decode_private_key(self.signing_key_private)

        global _resolved_signing_key
        with _signing_key_lock:
            if _resolved_signing_key is None:
                created = self.create_signing_key()
                if not created.get('id') or not created.get('private_key'):
                    raise ProviderRejected("Video provider did not return a usable signing key")
                logger.warning(
                    f"Provisioned playback signing key {created['id']}. Set MUX_SIGNING_KEY_ID and "
                    f"MUX_SIGNING_KEY_PRIVATE to reuse it across restarts"
                )
                _resolved_signing_key = (created['id'], _decode_private_key(created['private_key']))
            return _resolved_signing_key

    def generate_playback_token(self, playback_id, expires_in=None, token_type='video', params=None):
        """Issue an RS256 playback token for a playback id"""
        if not playback_id:
            raise InvalidInput("Playback id is required")
        if token_type not in DEFAULT_TOKEN_TTLS:
            raise InvalidInput(f"Unsupported token type: {token_type}")

        ttl = int(expires_in or DEFAULT_TOKEN_TTLS[token_type])
        key_id, private_key = self._get_signing_key()
        now = int(self.clock())

        claims = dict(params or {})
        claims.update({
            'sub': playback_id,
            'aud': token_type,
            'iat': now,
            'exp': now + ttl,
            'kid': key_id,
        })

        try:
            return jwt.encode(claims, private_key, algorithm='RS256', headers={'kid': key_id})
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise ProviderRejected("Unable to sign playback token with the configured key") from e

    def playback_url(self, playback_id, policy='public', expires_in=None):
        """HLS manifest URL for a playback id"""
        if policy == 'signed':
            return self.signed_playback_url(playback_id, expires_in=expires_in)
        return f"{STREAM_BASE_URL}/{playback_id}.m3u8"

    def signed_playback_url(self, playback_id, expires_in=None):
        token = self.generate_playback_token(playback_id, expires_in=expires_in, token_type='video')
        return f"{STREAM_BASE_URL}/{playback_id}.m3u8?token={token}"

    def thumbnail_url(self, playback_id, signed=False, width=640, height=360, time=0):
        """Poster image URL; signed thumbnails carry their parameters inside the token"""
        params = {'width': width, 'height': height, 'time': time}
        if signed:
            token = self.generate_playback_token(playback_id, token_type='thumbnail', params=params)
            return f"{IMAGE_BASE_URL}/{playback_id}/thumbnail.jpg?token={token}"
        return f"{IMAGE_BASE_URL}/{playback_id}/thumbnail.jpg?{urlencode(params)}"

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook_signature(self, raw_body, signature_header, tolerance=None):
        """
        Check a ``t=<unix>,v1=<hex>`` signature header against the raw body.

        Returns False for a missing secret or header, a malformed header, a
        stale timestamp or a digest mismatch.
        """
        if not self.webhook_secret or not signature_header:
            return False

        tolerance = self.webhook_tolerance if tolerance is None else tolerance
        try:
            parts = {}
            for item in signature_header.split(','):
                name, value = item.strip().split('=', 1)
                parts[name] = value
            timestamp = int(parts['t'])
            signature = parts['v1']

            if abs(self.clock() - timestamp) > tolerance:
                logger.warning(f"Rejected webhook with stale timestamp {timestamp}")
                return False

            if isinstance(raw_body, str):
                raw_body = raw_body.encode('utf-8')
            signed_payload = f"{timestamp}.".encode('utf-8') + raw_body
            expected = hmac.new(
                self.webhook_secret.encode('utf-8'),
                signed_payload,
                hashlib.sha256,
            ).hexdigest()
            return hmac.compare_digest(expected, signature)
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Malformed webhook signature header: {str(e)}")
            return False


def get_provider_client():
    """Provider client bound to the configured credentials"""
    return ProviderClient()
