"""Tests for the typed command variants and the command catalogue."""

import asyncio

import pytest

from zentpi.api.models import ZenAddress, ZenColour, ZenInstance, ZenScene
from zentpi.api.protocol import ZenProtocol
from zentpi.api.types import ZenAddressType, ZenColourType, ZenErrorCode, ZenEventMask, ZenEventMode, ZenInstanceType
from zentpi.exceptions import ZenProtocolError, ZenResponseError
from zentpi.io.frame import ResponseType, build_request

from conftest import make_client, reply_answer, reply_ok, response_frame


def make_protocol(controller, responder=None, **kwargs) -> ZenProtocol:
    tpi = ZenProtocol(controllers=[controller], **kwargs)
    tpi.client = make_client(responder)
    return tpi


def sent_frames(tpi: ZenProtocol) -> list[bytes]:
    return [frame for frame, _ in tpi.client._transport.sent]


def reply(response_type, data=b""):
    def responder(frame: bytes) -> bytes:
        return response_frame(response_type, frame[1], data)
    return responder


@pytest.mark.asyncio
async def test_arc_level_to_group(controller):
    tpi = make_protocol(controller, reply_ok)
    group = ZenAddress(controller, ZenAddressType.GROUP, 7)
    assert await tpi.dali_arc_level(group, 254) is True

    frame = sent_frames(tpi)[0]
    assert frame == build_request(frame[1], 0xA2, [71, 0, 0, 254])
    assert frame[:7] == bytes([0x04, frame[1], 0xA2, 71, 0, 0, 254])


@pytest.mark.asyncio
async def test_arc_level_validates_level(controller):
    tpi = make_protocol(controller, reply_ok)
    with pytest.raises(ValueError):
        await tpi.dali_arc_level(ZenAddress(controller, ZenAddressType.ECG, 1), 255)
    assert sent_frames(tpi) == []


@pytest.mark.asyncio
async def test_basic_frame_pads_data(controller):
    tpi = make_protocol(controller, reply_ok)
    await tpi._send_basic(controller, 0x99, 5, [1], return_type='ok')
    assert sent_frames(tpi)[0][3:7] == bytes([5, 1, 0, 0])
    with pytest.raises(ValueError):
        await tpi._send_basic(controller, 0x99, 5, [1, 2, 3, 4])


@pytest.mark.asyncio
@pytest.mark.parametrize("return_type, data, expected", [
    ('bytes', b"\x01\x02", b"\x01\x02"),
    ('str', b"Kitchen", "Kitchen"),
    ('list', b"\x03\x01", [3, 1]),
    ('int', b"\x2a", 42),
    ('bool', b"\x01", True),
    ('bool', b"\x00", False),
])
async def test_basic_answer_decoding(controller, return_type, data, expected):
    tpi = make_protocol(controller, reply(ResponseType.ANSWER, data))
    assert await tpi._send_basic(controller, 0x99, return_type=return_type) == expected


@pytest.mark.asyncio
@pytest.mark.parametrize("return_type, data", [('int', b"\x01\x02"), ('bool', b""), ('ok', b"\x01")])
async def test_basic_answer_shape_mismatch(controller, return_type, data):
    tpi = make_protocol(controller, reply(ResponseType.ANSWER, data))
    with pytest.raises(ZenResponseError):
        await tpi._send_basic(controller, 0x99, return_type=return_type)


@pytest.mark.asyncio
async def test_basic_ok_with_value_type_is_an_error(controller):
    tpi = make_protocol(controller, reply_ok)
    with pytest.raises(ZenResponseError):
        await tpi._send_basic(controller, 0x99, return_type='int')


@pytest.mark.asyncio
async def test_basic_no_answer(controller):
    tpi = make_protocol(controller, reply(ResponseType.NO_ANSWER))
    assert await tpi._send_basic(controller, 0x99, return_type='ok') is False
    assert await tpi._send_basic(controller, 0x99, return_type='int') is None


@pytest.mark.asyncio
async def test_error_with_known_code(controller):
    tpi = make_protocol(controller, reply(ResponseType.ERROR, [0xB8]))
    with pytest.raises(ZenProtocolError) as excinfo:
        await tpi._send_basic(controller, 0x99, return_type='ok')
    assert excinfo.value.error_code is ZenErrorCode.UNKNOWN_TARGET


@pytest.mark.asyncio
async def test_error_with_unknown_code(controller):
    tpi = make_protocol(controller, reply(ResponseType.ERROR, [0x7E]))
    with pytest.raises(ZenResponseError) as excinfo:
        await tpi._send_basic(controller, 0x99)
    assert excinfo.value.code == 0x7E
    assert "Unknown error code" in str(excinfo.value)


@pytest.mark.asyncio
async def test_error_without_code_means_no_value(controller):
    tpi = make_protocol(controller, reply(ResponseType.ERROR))
    address = ZenAddress(controller, ZenAddressType.ECG, 4)
    assert await tpi.query_dali_device_label(address) is None
    assert await tpi.query_dali_device_label(address, generic_if_none=True) == "Controller 1 ECG 4"


@pytest.mark.asyncio
async def test_unknown_response_code(controller):
    tpi = make_protocol(controller, reply(0xB9))
    with pytest.raises(ZenResponseError):
        await tpi._send_basic(controller, 0x99)


@pytest.mark.asyncio
async def test_dynamic_frame(controller):
    tpi = make_protocol(controller, reply_ok)
    assert await tpi._send_dynamic(controller, 0x40, [1, 2, 3]) is True
    assert sent_frames(tpi)[0][2:7] == bytes([0x40, 3, 1, 2, 3])


@pytest.mark.asyncio
async def test_dynamic_frame_decoding(controller):
    tpi = make_protocol(controller, reply(ResponseType.ANSWER, b"\x09"))
    assert await tpi._send_dynamic(controller, 0x40, [], return_type='bytes') == b"\x09"

    tpi = make_protocol(controller, reply(ResponseType.NO_ANSWER))
    assert await tpi._send_dynamic(controller, 0x40, []) is False
    assert await tpi._send_dynamic(controller, 0x40, [], return_type='bytes') is None

    tpi = make_protocol(controller, reply(ResponseType.NO_ANSWER, [3]))
    with pytest.raises(ZenResponseError):
        await tpi._send_dynamic(controller, 0x40, [], return_type='bytes')

    tpi = make_protocol(controller, reply(ResponseType.ERROR, [0xB1]))
    with pytest.raises(ZenProtocolError):
        await tpi._send_dynamic(controller, 0x40, [])


@pytest.mark.asyncio
async def test_dali_colour_payload(controller):
    tpi = make_protocol(controller, reply_ok)
    group = ZenAddress(controller, ZenAddressType.GROUP, 2)
    colour = ZenColour(type=ZenColourType.TC, kelvin=4000)
    assert await tpi.dali_colour(group, colour) is True
    frame = sent_frames(tpi)[0]
    assert frame[2] == 0x0E
    assert frame[3:-1] == bytes([66, 255, 0x20, 0x0F, 0xA0, 0xFF, 0xFF, 0xFF, 0xFF])


@pytest.mark.asyncio
async def test_dali_colour_no_answer(controller):
    tpi = make_protocol(controller, reply(ResponseType.NO_ANSWER))
    colour = ZenColour(type=ZenColourType.RGBWAF, r=1, g=2, b=3)
    assert await tpi.dali_colour(ZenAddress(controller, ZenAddressType.ECG, 1), colour, level=100) is False


@pytest.mark.asyncio
async def test_query_dali_colour(controller):
    tpi = make_protocol(controller, reply_answer([0x20, 0x1D, 0x4C, 0xFF, 0xFF, 0xFF, 0xFF]))
    colour = await tpi.query_dali_colour(ZenAddress(controller, ZenAddressType.ECG, 1))
    assert colour.kelvin == 7500


@pytest.mark.asyncio
async def test_query_level(controller):
    ecg = ZenAddress(controller, ZenAddressType.ECG, 1)
    assert await make_protocol(controller, reply_answer([128])).dali_query_level(ecg) == 128
    assert await make_protocol(controller, reply_answer([255])).dali_query_level(ecg) is None


@pytest.mark.asyncio
async def test_query_controller_version(controller):
    tpi = make_protocol(controller, reply_answer([2, 4, 17]))
    assert await tpi.query_controller_version_number(controller) == "2.4.17"


@pytest.mark.asyncio
async def test_query_control_gear_addresses(controller):
    tpi = make_protocol(controller, reply_answer([0b00000101, 0, 0, 0, 0, 0, 0, 0b10000000]))
    addresses = await tpi.query_control_gear_dali_addresses(controller)
    assert [address.number for address in addresses] == [0, 2, 63]
    assert all(address.type == ZenAddressType.ECG for address in addresses)


@pytest.mark.asyncio
async def test_query_group_membership(controller):
    tpi = make_protocol(controller, reply_answer([0b00000001, 0b00000110]))
    groups = await tpi.query_group_membership_by_address(ZenAddress(controller, ZenAddressType.ECG, 5))
    assert [group.number for group in groups] == [1, 2, 8]


@pytest.mark.asyncio
async def test_query_group_numbers(controller):
    tpi = make_protocol(controller, reply_answer([4, 0, 2]))
    groups = await tpi.query_group_numbers(controller)
    assert [group.number for group in groups] == [0, 2, 4]


@pytest.mark.asyncio
async def test_query_group_by_number(controller):
    tpi = make_protocol(controller, reply_answer([3, 1, 200]))
    result = await tpi.query_group_by_number(ZenAddress(controller, ZenAddressType.GROUP, 3))
    assert result == {'group': 3, 'occupancy': True, 'level': 200}


@pytest.mark.asyncio
async def test_scene_label_generic(controller):
    tpi = make_protocol(controller, reply(ResponseType.NO_ANSWER))
    group = ZenAddress(controller, ZenAddressType.GROUP, 1)
    assert await tpi.query_scene_label_for_group(group, 3) is None
    assert await tpi.query_scene_label_for_group(group, 3, generic_if_none=True) == "Scene 3"
    with pytest.raises(ValueError):
        await tpi.query_scene_label_for_group(group, 12)


@pytest.mark.asyncio
async def test_system_variables(controller):
    tpi = make_protocol(controller, reply_ok)
    assert await tpi.set_system_variable(controller, 10, -2) is True
    assert sent_frames(tpi)[0][3:7] == bytes([10, 0, 0xFF, 0xFE])
    with pytest.raises(ValueError):
        await tpi.set_system_variable(controller, 148, 0)

    tpi = make_protocol(controller, reply_answer([0x80, 0x00]))
    assert await tpi.query_system_variable(controller, 10) == -32768


@pytest.mark.asyncio
async def test_profiles(controller):
    tpi = make_protocol(controller, reply_answer([0x01, 0x02]))
    assert await tpi.query_current_profile_number(controller) == 0x0102

    tpi = make_protocol(controller, reply_ok)
    assert await tpi.change_profile_number(controller, 0xFFFF) is True
    assert sent_frames(tpi)[0][3:7] == bytes([0, 0, 0xFF, 0xFF])


@pytest.mark.asyncio
async def test_tpi_event_emit_disables_first(controller):
    def echo(frame: bytes) -> bytes:
        return response_frame(ResponseType.ANSWER, frame[1], [frame[3]])

    tpi = make_protocol(controller, echo)
    mode = ZenEventMode(enabled=True, unicast=True, multicast=True)
    assert await tpi.tpi_event_emit(controller, mode) is True
    frames = sent_frames(tpi)
    assert [frame[2] for frame in frames] == [0x08, 0x08]
    assert [frame[3] for frame in frames] == [0x00, 0x41]


@pytest.mark.asyncio
async def test_tpi_event_emit_not_confirmed(controller):
    tpi = make_protocol(controller, reply_answer([0x00]))
    assert await tpi.tpi_event_emit(controller) is False


@pytest.mark.asyncio
async def test_query_tpi_event_emit_state(controller):
    tpi = make_protocol(controller, reply_answer([0x01]))
    mode = await tpi.query_tpi_event_emit_state(controller)
    assert mode.enabled and mode.multicast and not mode.unicast


@pytest.mark.asyncio
async def test_set_and_clear_unicast_address(controller):
    tpi = make_protocol(controller, reply_ok)
    assert await tpi.set_tpi_event_unicast_address(controller, "192.0.2.50", 6970) is True
    assert await tpi.set_tpi_event_unicast_address(controller) is True
    first, second = sent_frames(tpi)
    assert first[2:10] == bytes([0x40, 6, 0x1B, 0x3A, 192, 0, 2, 50])
    assert second[2:10] == bytes([0x40, 6, 0, 0, 0, 0, 0, 0])
    with pytest.raises(ValueError):
        await tpi.set_tpi_event_unicast_address(controller, "192.0.2", 6970)


@pytest.mark.asyncio
async def test_query_unicast_address(controller):
    tpi = make_protocol(controller, reply_answer([0x41, 0x13, 0xF4, 10, 0, 0, 5]))
    result = await tpi.query_tpi_event_unicast_address(controller)
    assert result['port'] == 5108
    assert result['ip'] == "10.0.0.5"
    assert result['mode'].unicast


@pytest.mark.asyncio
async def test_event_filters(controller):
    tpi = make_protocol(controller, reply_ok)
    instance = ZenInstance(ZenAddress(controller, ZenAddressType.ECD, 2), ZenInstanceType.PUSH_BUTTON, 1)
    assert await tpi.dali_add_tpi_event_filter(instance, ZenEventMask(button_hold=True)) is True
    assert await tpi.dali_clear_tpi_event_filter(ZenAddress.broadcast(controller)) is True
    add, clear = sent_frames(tpi)
    assert add[2:7] == bytes([0x31, 66, 1, 0x00, 0x02])
    assert clear[2:7] == bytes([0x33, 255, 0xFF, 0x03, 0xFF])


@pytest.mark.asyncio
async def test_print_traffic(controller, capsys):
    tpi = make_protocol(controller, reply_ok, print_traffic=True)
    await tpi.dali_off(ZenAddress.broadcast(controller))
    output = capsys.readouterr().out
    assert "REQUEST: [0x04" in output
    assert "RESPONSE: [0xA0" in output


@pytest.mark.asyncio
async def test_aclose_closes_client(controller):
    tpi = make_protocol(controller, reply_ok)
    client = tpi.client
    async with tpi:
        await tpi.dali_recall_max(ZenAddress(controller, ZenAddressType.ECG, 0))
    assert tpi.client is None
    assert not client.is_connected()


@pytest.mark.asyncio
async def test_client_created_on_first_use(controller):
    tpi = ZenProtocol(controllers=[controller], response_timeout=0.5, max_retries=1)
    client = await tpi._get_client()
    try:
        assert client.is_connected()
        assert client.response_timeout == 0.5
        assert client.max_retries == 1
        assert await tpi._get_client() is client
    finally:
        await tpi.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize("responder, expected", [
    (reply_answer([200]), 200),
    (reply_answer([255]), None),
    (reply(ResponseType.NO_ANSWER), None),
])
async def test_query_scene_level(controller, responder, expected):
    tpi = make_protocol(controller, responder)
    group = ZenAddress(controller, ZenAddressType.GROUP, 3)
    assert await tpi.query_scene_level(group, 2) == expected
    assert sent_frames(tpi)[0][2:7] == bytes([0x13, 3, 2, 0, 0])


@pytest.mark.asyncio
async def test_query_scene_level_validates_scene(controller):
    tpi = make_protocol(controller, reply_answer([200]))
    group = ZenAddress(controller, ZenAddressType.GROUP, 3)
    with pytest.raises(ValueError):
        await tpi.query_scene_level(group, 12)
    with pytest.raises(ValueError):
        await tpi.query_scene_level(ZenAddress(controller, ZenAddressType.ECG, 3), 0)
    assert sent_frames(tpi) == []


@pytest.mark.asyncio
async def test_query_scenes_for_group(controller):
    def responder(frame: bytes) -> bytes:
        if frame[2] == 0x1A:
            return response_frame(ResponseType.ANSWER, frame[1], [0, 0b101])
        if frame[4] == 0:
            return response_frame(ResponseType.ANSWER, frame[1], b"Bright")
        return response_frame(ResponseType.NO_ANSWER, frame[1])

    tpi = make_protocol(controller, responder)
    group = ZenAddress(controller, ZenAddressType.GROUP, 4)
    scenes = await tpi.query_scenes_for_group(group, generic_if_none=True)
    assert scenes == [ZenScene(group, 0, "Bright"), ZenScene(group, 2, "Scene 2")]


@pytest.mark.asyncio
async def test_closed_command_socket_is_reopened(controller, caplog):
    tpi = make_protocol(controller, reply_ok)
    old_client = tpi.client
    old_client._transport.close()
    try:
        client = await tpi._get_client()
        assert client is not old_client
        assert client.is_connected()
        assert not old_client.is_connected()
        assert "Command socket was closed, reopening" in caplog.text
    finally:
        await tpi.aclose()
