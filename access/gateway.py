"""
Network Access Gateway integration

The gateway enforces accept/disconnect at the network layer. The access core
only emits directives to it; every backend raises GatewayUnreachable on any
failure (including timeouts) and the authorizer logs and moves on.

Backends (select with settings.ACCESS_GATEWAY_BACKEND):
  - RadiusHTTPGateway: posts signed directives to a RADIUS bridge endpoint
  - MikrotikGateway:   hotspot ip-binding bypass via the RouterOS API
  - LoggingGateway:    logs directives only (development / no router access)
"""

import hashlib
import hmac
import json
import logging
import socket
import threading

import requests
import routeros_api
from django.conf import settings
from django.utils.module_loading import import_string

from .exceptions import GatewayUnreachable

logger = logging.getLogger(__name__)

# Guards the process-wide socket default timeout swapped in MikrotikGateway._connect
_socket_timeout_lock = threading.Lock()


def get_gateway():
    """Instantiate the configured gateway backend"""
    backend = getattr(
        settings, "ACCESS_GATEWAY_BACKEND", "access.gateway.LoggingGateway"
    )
    return import_string(backend)()


def _gateway_timeout():
    return float(getattr(settings, "GATEWAY_TIMEOUT_SECONDS", 5))


class BaseGateway:
    """Directive interface consumed by the authorizer"""

    def send_accept(self, device_id: str, session_timeout_seconds: int) -> None:
        raise NotImplementedError

    def send_disconnect(self, device_id: str) -> None:
        raise NotImplementedError


class LoggingGateway(BaseGateway):
    def send_accept(self, device_id, session_timeout_seconds):
        logger.info(f"Gateway (log only): accept {device_id} for {session_timeout_seconds}s")

    def send_disconnect(self, device_id):
        logger.info(f"Gateway (log only): disconnect {device_id}")


class RadiusHTTPGateway(BaseGateway):
    """
    RADIUS bridge client.

    Each directive is a JSON POST to ``{RADIUS_SERVER_URL}/{action}`` signed
    with HMAC-SHA256 over the raw body using RADIUS_SHARED_SECRET
    (``X-Radius-Signature`` header). The bridge translates it into an
    Access-Accept (with Session-Timeout) or a Disconnect-Request.
    """

    def __init__(self, base_url=None, shared_secret=None, timeout=None):
        self.base_url = (
            base_url or getattr(settings, "RADIUS_SERVER_URL", "http://localhost:1812")
        ).rstrip("/")
        self.shared_secret = shared_secret or getattr(
            settings, "RADIUS_SHARED_SECRET", ""
        )
        self.timeout = timeout or _gateway_timeout()

    def _sign(self, body: bytes) -> str:
        return hmac.new(self.shared_secret.encode(), body, hashlib.sha256).hexdigest()

    def _post(self, action: str, payload: dict) -> dict:
        body = json.dumps(payload, separators=(",", ":")).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Radius-Signature": self._sign(body),
        }
        url = f"{self.base_url}/{action}"

        try:
            response = requests.post(url, data=body, headers=headers, timeout=self.timeout)
        except requests.exceptions.Timeout:
            raise GatewayUnreachable(f"RADIUS bridge timeout after {self.timeout}s")
        except requests.exceptions.RequestException as exc:
            raise GatewayUnreachable(f"RADIUS bridge request failed: {exc}")

        if response.status_code not in (200, 201, 202):
            raise GatewayUnreachable(
                f"RADIUS bridge rejected {action}: HTTP {response.status_code}"
            )

        try:
            return response.json()
        except ValueError:
            return {}

    def send_accept(self, device_id, session_timeout_seconds):
        self._post(
            "accept",
            {
                "action": "accept",
                "username": device_id,
                "sessionTimeout": int(session_timeout_seconds),
            },
        )
        logger.info(
            f"RADIUS accept sent for {device_id} (timeout {session_timeout_seconds}s)"
        )

    def send_disconnect(self, device_id):
        self._post("disconnect", {"action": "disconnect", "username": device_id})
        logger.info(f"RADIUS disconnect sent for {device_id}")


class MikrotikGateway(BaseGateway):
    """
    MikroTik hotspot backend.

    Accept creates (or refreshes) a bypassed /ip/hotspot/ip-binding for the
    MAC; disconnect removes those bindings and any /ip/hotspot/active entry.
    RouterOS has no per-binding timeout, so expiry relies on the sweeper.
    """

    BINDING_COMMENT = "captiveportal"

    def __init__(self, timeout=None):
        self.timeout = timeout or _gateway_timeout()

    def _connect(self):
        # routeros_api has no timeout argument; bound the socket instead.
        # Other threads opening sockets meanwhile also see this default.
        with _socket_timeout_lock:
            original_timeout = socket.getdefaulttimeout()
            socket.setdefaulttimeout(self.timeout)
            try:
                pool = routeros_api.RouterOsApiPool(
                    getattr(settings, "MIKROTIK_HOST", "192.168.88.1"),
                    username=getattr(settings, "MIKROTIK_USER", "admin"),
                    password=getattr(settings, "MIKROTIK_PASSWORD", ""),
                    port=int(getattr(settings, "MIKROTIK_PORT", 8728)),
                    use_ssl=bool(getattr(settings, "MIKROTIK_USE_SSL", False)),
                    ssl_verify=bool(getattr(settings, "MIKROTIK_SSL_VERIFY", False)),
                    plaintext_login=True,
                )
                return pool, pool.get_api()
            except Exception as exc:
                raise GatewayUnreachable(f"MikroTik connection failed: {exc}")
            finally:
                socket.setdefaulttimeout(original_timeout)

    def send_accept(self, device_id, session_timeout_seconds):
        pool, api = self._connect()
        try:
            bindings = api.get_resource("/ip/hotspot/ip-binding")
            comment = f"{self.BINDING_COMMENT} timeout={int(session_timeout_seconds)}"
            existing = bindings.get(mac_address=device_id)

            if existing:
                for item in existing:
                    binding_id = item.get(".id") or item.get("id")
                    if binding_id:
                        bindings.set(id=binding_id, type="bypassed", comment=comment)
                logger.info(f"Updated bypass binding for {device_id}")
            else:
                bindings.add(type="bypassed", mac_address=device_id, comment=comment)
                logger.info(f"Created bypass binding for {device_id}")
        except Exception as exc:
            raise GatewayUnreachable(f"MikroTik accept failed for {device_id}: {exc}")
        finally:
            pool.disconnect()

    def send_disconnect(self, device_id):
        pool, api = self._connect()
        try:
            bindings = api.get_resource("/ip/hotspot/ip-binding")
            removed = 0
            for item in bindings.get(mac_address=device_id):
                binding_id = item.get(".id") or item.get("id")
                if binding_id:
                    bindings.remove(id=binding_id)
                    removed += 1

            active = api.get_resource("/ip/hotspot/active")
            kicked = 0
            for entry in active.get():
                if (entry.get("mac-address") or "").upper() == device_id.upper():
                    entry_id = entry.get(".id") or entry.get("id")
                    if entry_id:
                        active.remove(id=entry_id)
                        kicked += 1

            logger.info(
                f"MikroTik disconnect for {device_id}: {removed} binding(s), {kicked} active session(s)"
            )
        except Exception as exc:
            raise GatewayUnreachable(
                f"MikroTik disconnect failed for {device_id}: {exc}"
            )
        finally:
            pool.disconnect()
