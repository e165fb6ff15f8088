"""
Shared pytest fixtures for mbtcp unit tests.

Connections run over socket.socketpair(), so no network is needed.
"""

import pytest

from tests.devices import RawPDU, connection_pair


@pytest.fixture
def conn_pair():
    """Connection using the default Modbus PDU codec, plus its raw peer socket."""
    conn, peer = connection_pair(response_timeout=200, request_timeout=200)
    yield conn, peer
    conn.close()
    peer.close()


@pytest.fixture
def raw_conn_pair():
    """Connection treating payloads as opaque bytes, plus its raw peer socket."""
    conn, peer = connection_pair(
        response_timeout=200,
        request_timeout=200,
        request_type=RawPDU,
        response_type=RawPDU,
        exception_type=RawPDU,
    )
    yield conn, peer
    conn.close()
    peer.close()
