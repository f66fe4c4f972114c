import pytest

from weir.handshake import (
    AUTH_PLUGIN_NAME,
    DEFAULT_CAPABILITY,
    DEFAULT_COLLATION_ID,
    UTF8MB4_GENERAL_CI,
    Capability,
    HandshakeResponse,
    MalformedPacketError,
    build_initial_handshake,
    parse_attrs,
    parse_handshake_response_body,
    parse_handshake_response_header,
    parse_old_handshake_response_body,
    parse_old_handshake_response_header,
)
from weir.protocol import dump_length_encoded_int, dump_length_encoded_string

SALT = bytes(range(1, 21))


def _header41(capability, collation=33):
    return (
        int(capability).to_bytes(4, "little")
        + (1 << 24).to_bytes(4, "little")
        + bytes([collation])
        + bytes(23)
    )


def _attrs_blob(pairs):
    return b"".join(
        dump_length_encoded_string(k.encode()) + dump_length_encoded_string(v.encode())
        for k, v in pairs
    )


def _parse41(packet):
    response, offset = parse_handshake_response_header(packet)
    return parse_handshake_response_body(response, packet, offset)


def test_header41_fields():
    caps = Capability.PROTOCOL_41 | Capability.SECURE_CONNECTION
    response, offset = parse_handshake_response_header(_header41(caps, collation=33) + b"x\x00")
    assert response.capability == int(caps)
    assert response.collation == 33
    assert offset == 4 + 4 + 1 + 23


def test_header41_too_short():
    with pytest.raises(MalformedPacketError):
        parse_handshake_response_header(bytes(31))


def test_full_response_secure_connection():
    caps = (
        Capability.PROTOCOL_41
        | Capability.SECURE_CONNECTION
        | Capability.CONNECT_WITH_DB
        | Capability.PLUGIN_AUTH
        | Capability.CONNECT_ATTRS
    )
    attrs = _attrs_blob([("_client_name", "libmysql"), ("_os", "linux")])
    packet = (
        _header41(caps)
        + b"root\x00"
        + bytes([3])
        + b"abc"
        + b"testdb\x00"
        + AUTH_PLUGIN_NAME
        + b"\x00"
        + dump_length_encoded_string(attrs)
    )
    response = _parse41(packet)
    assert response.user == "root"
    assert response.auth == b"abc"
    assert response.db_name == "testdb"
    assert response.attrs == {"_client_name": "libmysql", "_os": "linux"}


def test_lenenc_auth_data():
    caps = Capability.PROTOCOL_41 | Capability.PLUGIN_AUTH_LENENC_CLIENT_DATA
    auth = bytes(range(20))
    packet = _header41(caps) + b"alice\x00" + dump_length_encoded_string(auth)
    response = _parse41(packet)
    assert response.user == "alice"
    assert response.auth == auth


def test_null_terminated_auth_without_secure_connection():
    caps = Capability.PROTOCOL_41
    packet = _header41(caps) + b"bob\x00" + b"xyz\x00"
    response = _parse41(packet)
    assert (response.user, response.auth) == ("bob", b"xyz")


def test_auth_longer_than_packet_is_malformed():
    caps = Capability.PROTOCOL_41 | Capability.SECURE_CONNECTION
    packet = _header41(caps) + b"root\x00" + bytes([50]) + b"abc"
    response, offset = parse_handshake_response_header(packet)
    with pytest.raises(MalformedPacketError):
        parse_handshake_response_body(response, packet, offset)


def test_user_without_terminator_is_malformed():
    caps = Capability.PROTOCOL_41 | Capability.SECURE_CONNECTION
    packet = _header41(caps) + b"root"
    response, offset = parse_handshake_response_header(packet)
    with pytest.raises(MalformedPacketError):
        parse_handshake_response_body(response, packet, offset)


def test_truncated_attrs_are_ignored():
    caps = Capability.PROTOCOL_41 | Capability.SECURE_CONNECTION | Capability.CONNECT_ATTRS
    broken = dump_length_encoded_string(b"key") + b"\x05ab"
    packet = _header41(caps) + b"root\x00" + bytes([0]) + dump_length_encoded_string(broken)
    response = _parse41(packet)
    assert response.user == "root"
    assert response.attrs == {}


def test_old_header():
    data = int(Capability.CONNECT_WITH_DB).to_bytes(2, "little") + bytes(3) + b"u\x00"
    response, offset = parse_old_handshake_response_header(data)
    assert offset == 5
    assert response.capability & Capability.PROTOCOL_41
    assert response.capability & Capability.CONNECT_WITH_DB
    assert response.collation == UTF8MB4_GENERAL_CI


def test_old_header_too_short():
    with pytest.raises(MalformedPacketError):
        parse_old_handshake_response_header(bytes(4))


def test_old_body_with_db():
    data = (
        int(Capability.CONNECT_WITH_DB).to_bytes(2, "little")
        + bytes(3)
        + b"carol\x00"
        + b"shop\x00"
        + b"scramble\x00"
    )
    response, offset = parse_old_handshake_response_header(data)
    response = parse_old_handshake_response_body(response, data, offset)
    assert response.user == "carol"
    assert response.db_name == "shop"
    assert response.auth == b"scramble"


def test_old_body_without_db():
    data = bytes(2) + bytes(3) + b"dave\x00" + b"scramble\x00"
    response, offset = parse_old_handshake_response_header(data)
    response = parse_old_handshake_response_body(response, data, offset)
    assert (response.user, response.db_name, response.auth) == ("dave", "", b"scramble")


def test_old_body_missing_terminator():
    response = HandshakeResponse(capability=int(Capability.PROTOCOL_41))
    with pytest.raises(MalformedPacketError):
        parse_old_handshake_response_body(response, b"dave\x00scramble", 0)


def test_parse_attrs_round_trip():
    pairs = [("a", "1"), ("program_name", "mysql")]
    assert parse_attrs(_attrs_blob(pairs)) == dict(pairs)
    assert parse_attrs(b"") == {}


def test_parse_attrs_truncated_value():
    with pytest.raises(EOFError):
        parse_attrs(dump_length_encoded_string(b"k") + b"\x04ab")


def test_parse_attrs_missing_value():
    with pytest.raises(MalformedPacketError):
        parse_attrs(dump_length_encoded_string(b"k"))


def test_initial_handshake_layout():
    payload = build_initial_handshake(7, SALT, DEFAULT_CAPABILITY, 0, "5.7.25")
    assert payload[0] == 10
    version, rest = payload[1:].split(b"\x00", 1)
    assert version == b"5.7.25"
    assert int.from_bytes(rest[:4], "little") == 7
    assert rest[4:12] == SALT[:8]
    assert rest[12] == 0
    low = int.from_bytes(rest[13:15], "little")
    assert rest[15] == DEFAULT_COLLATION_ID
    high = int.from_bytes(rest[18:20], "little")
    assert low | (high << 16) == int(DEFAULT_CAPABILITY)
    assert rest[20] == len(SALT) + 1
    assert rest[21:31] == bytes(10)
    assert rest[31:43] == SALT[8:]
    assert payload.endswith(b"\x00" + AUTH_PLUGIN_NAME + b"\x00")


def test_initial_handshake_keeps_given_collation():
    payload = build_initial_handshake(1, SALT, Capability.PROTOCOL_41, 33, "v")
    _, rest = payload[1:].split(b"\x00", 1)
    assert rest[15] == 33


def test_initial_handshake_rejects_short_salt():
    with pytest.raises(ValueError):
        build_initial_handshake(1, b"short", DEFAULT_CAPABILITY, 0, "v")