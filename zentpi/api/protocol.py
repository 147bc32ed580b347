import asyncio
import socket
import time
import logging
from typing import Optional, Callable, Any, TYPE_CHECKING
from colorama import Fore, Style

from ..io import ZenClient, ZenListener, ZenEvent, Response, ResponseType, ClientConst, build_request, format_bytes
from .models import ZenController, ZenAddress, ZenInstance, ZenColour, ZenScene
from .types import ZenAddressType, ZenInstanceType, ZenEventCode, ZenEventMask, ZenEventMode, ZenErrorCode, Const
from .events import ZenEventHandlers
from ..exceptions import ZenError, ZenResponseError, ZenProtocolError

if TYPE_CHECKING:
    from ..config import ZenConfig

"""
===================================================================================
This module implements the ZenControl TPI Advanced API on top of zentpi.io.
===================================================================================
"""

class ZenProtocol:

    # Define commands as a dictionary
    CMD: dict[str, int] = {
        # Controller
        "QUERY_CONTROLLER_VERSION_NUMBER": 0x1C,    # Query ZenController Version Number
        "QUERY_CONTROLLER_LABEL": 0x24,             # Query the label of the controller
        "QUERY_CONTROLLER_STARTUP_COMPLETE": 0x27,  # Query whether controller startup is complete
        "QUERY_IS_DALI_READY": 0x26,                # Query whether DALI bus is ready (or has a fault)
        # System variables
        "SET_SYSTEM_VARIABLE": 0x36,                # Set a system variable value
        "QUERY_SYSTEM_VARIABLE": 0x37,              # Query system variable
        # TPI settings
        "ENABLE_TPI_EVENT_EMIT": 0x08,              # Enable or disable TPI Events
        "QUERY_TPI_EVENT_EMIT_STATE": 0x07,         # Query whether TPI Events are enabled or disabled
        "DALI_ADD_TPI_EVENT_FILTER": 0x31,          # Request that filters be added for DALI TPI Events
        "DALI_CLEAR_TPI_EVENT_FILTERS": 0x33,       # Request that DALI TPI Event filters be cleared
        "SET_TPI_EVENT_UNICAST_ADDRESS": 0x40,      # Set a TPI Events unicast address and port
        "QUERY_TPI_EVENT_UNICAST_ADDRESS": 0x41,    # Query TPI Events State, unicast address and port
        # Any address
        "QUERY_DALI_DEVICE_LABEL": 0x03,            # Query the label for a DALI ECD or ECG by address
        # Groups / Group-scenes
        "QUERY_GROUP_MEMBERSHIP_BY_ADDRESS": 0x15,  # Query DALI Group membership by address
        "QUERY_GROUP_NUMBERS": 0x09,                # Query the DALI Group numbers
        "QUERY_GROUP_LABEL": 0x01,                  # Query the label for a DALI Group by Group Number
        "QUERY_SCENE_NUMBERS_FOR_GROUP": 0x1A,      # Query Scene Numbers attributed to a group
        "QUERY_SCENE_LABEL_FOR_GROUP": 0x1B,        # Query Scene Labels attributed to a group scene
        "QUERY_SCENE_BY_NUMBER": 0x13,              # Query the level of a scene on a group
        "QUERY_GROUP_BY_NUMBER": 0x12,              # Query DALI Group information by Group Number
        # Profiles
        "QUERY_CURRENT_PROFILE_NUMBER": 0x05,       # Query the current profile number
        "CHANGE_PROFILE_NUMBER": 0xC0,              # Request a Profile Change on the controller
        # ECG (Lights)
        "QUERY_CONTROL_GEAR_DALI_ADDRESSES": 0x1D,  # Query Control Gear present in database
        "DALI_QUERY_LEVEL": 0xAA,                   # Query the the level on a address
        "QUERY_DALI_COLOUR": 0x34,                  # Query the Colour information on a DALI target
        "DALI_COLOUR": 0x0E,                        # Set a DALI target to a colour
        "DALI_ARC_LEVEL": 0xA2,                     # Set an Arc-Level on a address
        "DALI_RECALL_MAX": 0xA7,                    # Recall the max level on a address
        "DALI_RECALL_MIN": 0xA8,                    # Recall the min level on a address
        "DALI_OFF": 0xA9,                           # Set a address to Off
        "DALI_ENABLE_DAPC_SEQ": 0xB2,               # Begin a DALI DAPC sequence
        # Scenes
        "DALI_SCENE": 0xA1,                         # Call a DALI Scene on a address
    }

    # Shortest payload each event can be decoded from
    EVENT_PAYLOAD_LENGTH: dict[ZenEventCode, int] = {
        ZenEventCode.BUTTON_PRESS: 1,
        ZenEventCode.BUTTON_HOLD: 1,
        ZenEventCode.ABSOLUTE_INPUT: 3,
        ZenEventCode.LEVEL_CHANGE: 1,
        ZenEventCode.GROUP_LEVEL_CHANGE: 1,
        ZenEventCode.SCENE_CHANGE: 1,
        ZenEventCode.IS_OCCUPIED: 1,
        ZenEventCode.SYSTEM_VARIABLE_CHANGE: 5,
        ZenEventCode.COLOUR_CHANGE: 0,
        ZenEventCode.PROFILE_CHANGE: 2,
    }

    def __init__(self,
                 logger: Optional[logging.Logger] = None,
                 print_traffic: bool = False,
                 unicast: bool = False,
                 listen_ip: Optional[str] = None,
                 listen_port: Optional[int] = None,
                 response_timeout: float = ClientConst.DEFAULT_TIMEOUT,
                 max_requests_per_controller: int = ClientConst.DEFAULT_MAX_REQUESTS_PER_CONTROLLER,
                 max_retries: int = ClientConst.DEFAULT_MAX_RETRIES,
                 controllers: Optional[list[ZenController]] = None):
        self.logger = logger or logging.getLogger(__name__)
        self.print_traffic = print_traffic
        self.unicast = unicast
        self.listen_ip = (listen_ip if listen_ip else "0.0.0.0") if unicast else None
        self.listen_port = (listen_port if listen_port is not None else Const.DEFAULT_UNICAST_PORT) if unicast else None
        self.response_timeout = response_timeout
        self.max_requests_per_controller = max_requests_per_controller
        self.max_retries = max_retries

        # Command socket, opened on first use
        self.client: Optional[ZenClient] = None
        self._client_lock = asyncio.Lock()

        # Event socket, opened by start_event_monitoring()
        self.event_listener: Optional[ZenListener] = None

        # Subscribers for each kind of event
        self.events = ZenEventHandlers(self.logger)

        # Used to match events to controllers, and include controller objects in callbacks
        self.controllers: list[ZenController] = list(controllers) if controllers else []

    @classmethod
    def from_config(cls, config: "ZenConfig", logger: Optional[logging.Logger] = None) -> "ZenProtocol":
        return cls(
            logger=logger,
            print_traffic=config.print_traffic,
            unicast=config.unicast,
            listen_ip=config.listen_ip,
            listen_port=config.listen_port,
            response_timeout=config.response_timeout,
            max_requests_per_controller=config.max_requests_per_controller,
            max_retries=config.max_retries,
            controllers=config.controllers,
        )

    async def __aenter__(self):
        """Async context manager entry"""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit"""
        await self.aclose()

    async def aclose(self):
        """Stop event monitoring and close the command socket"""
        await self.stop_event_monitoring()
        if self.client:
            await self.client.close()
            self.client = None

    def set_controllers(self, controllers: list[ZenController]):
        self.controllers = list(controllers)

    # ============================
    # PACKET SENDING
    # ============================

    async def _get_client(self) -> ZenClient:
        async with self._client_lock:
            if self.client is None or not self.client.is_connected():
                if self.client is not None:
                    self.logger.warning("Command socket was closed, reopening")
                    await self.client.close()
                self.client = await ZenClient.create(
                    response_timeout=self.response_timeout,
                    max_retries=self.max_retries,
                    max_requests_per_controller=self.max_requests_per_controller,
                    logger=self.logger,
                )
        return self.client

    async def _send_packet(self, controller: ZenController, command: int, data: list[int]) -> Response:
        client = await self._get_client()
        sent_at = time.time()
        response = await client.send_request(controller, command, data)

        # print_traffic
        if self.print_traffic:
            rtt_ms = (response.timestamp - sent_at) * 1000
            print(Fore.MAGENTA + f"REQUEST: {format_bytes(build_request(response.seq, command, data))}  "
                + Fore.WHITE + Style.DIM + f"RTT: {rtt_ms:.0f}ms".ljust(10)
                + Style.BRIGHT + Fore.CYAN + f"  RESPONSE: {format_bytes(response.raw_rcvd)}"
                + Style.RESET_ALL)

        return response

    @staticmethod
    def _raise_for_error(response: Response) -> None:
        """ERROR responses: raise for a known or unknown code, return if there's no code at all"""
        if not response.data:
            # An ERROR without a code means "none", e.g. QUERY_DALI_DEVICE_LABEL with no label
            return
        code = response.data[0]
        if code in ZenErrorCode._value2member_map_:
            raise ZenProtocolError(ZenErrorCode(code))
        raise ZenResponseError(f"Unknown error code: {hex(code)}", code=code)

    async def _send_basic(self,
                   controller: ZenController,
                   command: int,
                   address: int = 0x00,
                   data: list[int] = [],
                   return_type: str = 'bytes'
                   ) -> Optional[bytes | str | list[int] | int | bool]:
        if len(data) > 3: raise ValueError(f"Basic frames carry at most 3 data bytes, got {len(data)}")
        payload = [address] + list(data) + [0x00] * (3 - len(data))
        response = await self._send_packet(controller, command, payload)
        return self._decode_basic(response, return_type)

    def _decode_basic(self, response: Response, return_type: str) -> Optional[bytes | str | list[int] | int | bool]:
        match response.response_type:
            case ResponseType.OK:
                match return_type:
                    case 'ok':
                        return True
                    case _:
                        raise ZenResponseError(f"Invalid return_type '{return_type}' for response code {response.response_type.name}")
            case ResponseType.ANSWER:
                match return_type:
                    case 'bytes':
                        return response.data
                    case 'str':
                        try:
                            return response.data.decode('utf-8')
                        except UnicodeDecodeError as e:
                            raise ZenResponseError(f"Invalid string in response: {e}")
                    case 'list':
                        return list(response.data)
                    case 'int':
                        if len(response.data) == 1: return int(response.data[0])
                        raise ZenResponseError(f"Invalid response of length {len(response.data)} for return type 'int'")
                    case 'bool':
                        if len(response.data) == 1: return bool(response.data[0])
                        raise ZenResponseError(f"Invalid response of length {len(response.data)} for return type 'bool'")
                    case _:
                        raise ZenResponseError(f"Invalid return_type '{return_type}' for response code {response.response_type.name}")
            case ResponseType.NO_ANSWER:
                match return_type:
                    case 'ok':
                        return False
                    case _:
                        return None
            case ResponseType.ERROR:
                self._raise_for_error(response)
                return None
            case _:
                raise ZenResponseError(f"Unknown response code: {hex(response.response_type)}", code=response.response_type)

    async def _send_colour(self, controller: ZenController, command: int, address: int, colour: ZenColour, level: int = 255) -> Optional[bool]:
        """Send a DALI colour command."""
        payload = [address, level & 0xFF] + list(colour.to_bytes())
        response = await self._send_packet(controller, command, payload)
        return self._decode_basic(response, 'ok')

    async def _send_dynamic(self, controller: ZenController, command: int, data: list[int], return_type: str = 'ok') -> Optional[bool | bytes]:
        # Calculate data length and prepend it to data
        response = await self._send_packet(controller, command, [len(data)] + list(data))
        # Check response type
        match response.response_type:
            case ResponseType.OK | ResponseType.ANSWER:
                if return_type == 'ok':
                    return True
                return response.data
            case ResponseType.NO_ANSWER:
                if return_type == 'ok':
                    return False
                if response.data:
                    raise ZenResponseError(f"No answer with code: {response.data[0]}", code=response.data[0])
                return None
            case ResponseType.ERROR:
                self._raise_for_error(response)
                return None
            case _:
                raise ZenResponseError(f"Unknown response code: {hex(response.response_type)}", code=response.response_type)

    # ============================
    # EVENT LISTENING
    # ============================

    def set_callbacks(self,
                      button_press_callback: Optional[Callable[..., Any]] = None,
                      button_hold_callback: Optional[Callable[..., Any]] = None,
                      absolute_input_callback: Optional[Callable[..., Any]] = None,
                      level_change_callback: Optional[Callable[..., Any]] = None,
                      group_level_change_callback: Optional[Callable[..., Any]] = None,
                      scene_change_callback: Optional[Callable[..., Any]] = None,
                      is_occupied_callback: Optional[Callable[..., Any]] = None,
                      system_variable_change_callback: Optional[Callable[..., Any]] = None,
                      colour_change_callback: Optional[Callable[..., Any]] = None,
                      profile_change_callback: Optional[Callable[..., Any]] = None,
                      ):
        """Subscribe one callback per event kind. Callbacks are added alongside existing subscribers."""
        callbacks = {
            ZenEventCode.BUTTON_PRESS: button_press_callback,
            ZenEventCode.BUTTON_HOLD: button_hold_callback,
            ZenEventCode.ABSOLUTE_INPUT: absolute_input_callback,
            ZenEventCode.LEVEL_CHANGE: level_change_callback,
            ZenEventCode.GROUP_LEVEL_CHANGE: group_level_change_callback,
            ZenEventCode.SCENE_CHANGE: scene_change_callback,
            ZenEventCode.IS_OCCUPIED: is_occupied_callback,
            ZenEventCode.SYSTEM_VARIABLE_CHANGE: system_variable_change_callback,
            ZenEventCode.COLOUR_CHANGE: colour_change_callback,
            ZenEventCode.PROFILE_CHANGE: profile_change_callback,
        }
        for code, callback in callbacks.items():
            if callback:
                self.events.subscribe(code, callback)

    def is_monitoring(self) -> bool:
        return self.event_listener is not None and self.event_listener.is_running()

    async def start_event_monitoring(self):
        if self.event_listener and self.event_listener.is_listening():
            self.logger.warning("Event monitoring already running")
            return

        if self.event_listener is None:
            self.event_listener = ZenListener(
                self._process_zen_event,
                unicast=self.unicast,
                listen_ip=self.listen_ip or "0.0.0.0",
                listen_port=self.listen_port or 0,
                on_lost=self._restart_event_monitoring,
                logger=self.logger,
            )

        # Bind first, so the port sent to controllers is the one we actually got
        await self.event_listener.start()

        # For the sake of our sanity, all controllers send event packets in the same way: either multicast or unicast (on one port)
        port = self.event_listener.bound_address()[1] if self.unicast else None
        await asyncio.gather(*(self._configure_controller_events(controller, port) for controller in self.controllers))

    async def _configure_controller_events(self, controller: ZenController, port: Optional[int]):
        try:
            if self.unicast:
                await self.set_tpi_event_unicast_address(controller, ipaddr=self._local_ip_for(controller), port=port)
                mode = ZenEventMode(enabled=True, filtering=controller.filtering, unicast=True, multicast=True)
            else:
                mode = ZenEventMode(enabled=True, filtering=controller.filtering, unicast=False, multicast=True)
            if not await self.tpi_event_emit(controller, mode):
                self.logger.warning(f"Controller {controller.id} didn't confirm event mode {mode}")
        except (ZenError, ValueError, OSError) as e:
            self.logger.error(f"Failed to enable events on controller {controller.id} ({controller.host}): {e}")

    def _local_ip_for(self, controller: ZenController) -> str:
        """The address of the interface that routes to this controller"""
        if self.listen_ip and self.listen_ip != "0.0.0.0":
            # Controllers need a dotted quad, listen_ip may be a hostname
            return socket.gethostbyname(self.listen_ip)
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            try:
                s.connect((controller.host, controller.port))  # No packets are sent
                return s.getsockname()[0]
            except OSError:
                return socket.gethostbyname(socket.gethostname())

    async def _restart_event_monitoring(self):
        if not self.is_monitoring():
            return
        try:
            await self.start_event_monitoring()
        except (OSError, ZenError, ValueError) as e:
            self.logger.error(f"Failed to restart event monitoring: {e}")

    async def stop_event_monitoring(self):
        """Stop listening for events"""
        if not self.is_monitoring():
            return
        await self.event_listener.stop()
        if self.unicast:
            await asyncio.gather(*(self._clear_controller_events(controller) for controller in self.controllers))

    async def _clear_controller_events(self, controller: ZenController):
        try:
            await self.set_tpi_event_unicast_address(controller)
        except ZenError as e:
            self.logger.error(f"Failed to clear unicast address on controller {controller.id} ({controller.host}): {e}")

    def _process_zen_event(self, event: ZenEvent):
        """Process received ZenEvent from ZenListener"""
        typecast = "unicast" if self.unicast else "multicast"

        # Find the controller that sent this event
        controller = next((ctrl for ctrl in self.controllers if ctrl.matches_mac(event.mac_address)), None)
        if not controller:
            self.logger.warning(f"Received {typecast} from unknown controller {event.mac_string} at {event.ip_address}: {format_bytes(event.raw_data)}")
            return

        if event.event_code not in ZenEventCode._value2member_map_:
            self.logger.warning(f"Received {typecast} with unknown event code {event.event_code} from controller {controller.id}")
            return
        code = ZenEventCode(event.event_code)
        target = event.target
        payload = event.payload

        if self.print_traffic:
            print(Fore.MAGENTA + f"{typecast.upper()} FROM: {event.ip_address}:{event.ip_port}" +
                  Fore.CYAN + f"  RECV: {format_bytes(event.raw_data)}" +
                  Style.RESET_ALL)
            print(Fore.CYAN + Style.DIM + f"         EVENT: {code.value} {code.name} - TARGET: {target} - PAYLOAD: {format_bytes(payload)}" + Style.RESET_ALL)

        if not self.events.has_subscribers(code):
            return

        if len(payload) < self.EVENT_PAYLOAD_LENGTH[code]:
            self.logger.warning(f"{code.name} event from controller {controller.id} has a short payload: {format_bytes(payload)}")
            return

        try:
            kwargs = self._decode_event(controller, code, target, payload)
        except ValueError as e:
            self.logger.warning(f"Invalid {code.name} event from controller {controller.id}: target {target}: {e}")
            return
        if kwargs is None:
            return

        self.events.fire(code, payload=payload, **kwargs)

    def _decode_event(self, controller: ZenController, code: ZenEventCode, target: int, payload: bytes) -> Optional[dict]:
        match code:
            case ZenEventCode.BUTTON_PRESS | ZenEventCode.BUTTON_HOLD:
                address = ZenAddress(controller=controller, type=ZenAddressType.ECD, number=target-64)
                instance = ZenInstance(address=address, type=ZenInstanceType.PUSH_BUTTON, number=payload[0])
                return {'instance': instance}

            case ZenEventCode.ABSOLUTE_INPUT:
                address = ZenAddress(controller=controller, type=ZenAddressType.ECD, number=target-64)
                instance = ZenInstance(address=address, type=ZenInstanceType.ABSOLUTE_INPUT, number=payload[0])
                value = ((payload[1] & 0xFF) << 8) | payload[2]
                return {'instance': instance, 'value': value}

            case ZenEventCode.LEVEL_CHANGE:
                address = ZenAddress(controller=controller, type=ZenAddressType.ECG, number=target)
                return {'address': address, 'arc_level': payload[0]}

            case ZenEventCode.GROUP_LEVEL_CHANGE:
                address = ZenAddress(controller=controller, type=ZenAddressType.GROUP, number=target)
                return {'address': address, 'arc_level': payload[0]}

            case ZenEventCode.SCENE_CHANGE:
                if target <= 63:
                    address = ZenAddress(controller=controller, type=ZenAddressType.ECG, number=target)
                elif 64 <= target <= 79:
                    address = ZenAddress(controller=controller, type=ZenAddressType.GROUP, number=target-64)
                else:
                    self.logger.warning(f"Invalid scene change event target: {target}")
                    return None
                return {'address': address, 'scene': payload[0]}

            case ZenEventCode.IS_OCCUPIED:
                address = ZenAddress(controller=controller, type=ZenAddressType.ECD, number=target-64)
                instance = ZenInstance(address=address, type=ZenInstanceType.OCCUPANCY_SENSOR, number=payload[0])
                return {'instance': instance}

            case ZenEventCode.SYSTEM_VARIABLE_CHANGE:
                if not 0 <= target < Const.MAX_SYSVAR:
                    self.logger.warning(f"Variable number must be between 0 and {Const.MAX_SYSVAR-1}, received {target}")
                    return None
                raw_value = int.from_bytes(payload[0:4], byteorder='big', signed=True)
                magnitude = int.from_bytes(payload[4:5], byteorder='big', signed=True)
                value = raw_value * (10 ** magnitude)
                return {'controller': controller, 'target': target, 'value': value}

            case ZenEventCode.COLOUR_CHANGE:
                if target <= 63:
                    address = ZenAddress(controller=controller, type=ZenAddressType.ECG, number=target)
                elif 64 <= target <= 79:
                    address = ZenAddress(controller=controller, type=ZenAddressType.GROUP, number=target-64)
                elif 127 <= target <= 143:
                    address = ZenAddress(controller=controller, type=ZenAddressType.GROUP, number=target-128)
                    self.logger.warning(f"Colour change event received with target={target}. Assumed to be group {target-128}.")
                else:
                    self.logger.debug(f"Ignoring colour change event with target {target}")
                    return None
                colour = ZenColour.from_bytes(payload)
                return {'address': address, 'colour': colour}

            case ZenEventCode.PROFILE_CHANGE:
                profile = int.from_bytes(payload[0:2], byteorder='big')
                return {'controller': controller, 'profile': profile}

    # ============================
    # API COMMANDS
    # ============================

    async def query_group_label(self, address: ZenAddress, generic_if_none: bool=False) -> Optional[str]:
        """Get the label for a DALI Group. Returns a string, or None if no label is set."""
        label = await self._send_basic(address.controller, self.CMD["QUERY_GROUP_LABEL"], address.group(), return_type='str')
        if not label and generic_if_none: return f"Group {address.number}"
        return label or None

    async def query_dali_device_label(self, address: ZenAddress, generic_if_none: bool=False) -> Optional[str]:
        """Query the label for a DALI device (control gear or control device). Returns a string, or None if no label is set."""
        label = await self._send_basic(address.controller, self.CMD["QUERY_DALI_DEVICE_LABEL"], address.ecg_or_ecd(), return_type='str')
        if not label and generic_if_none:
            return f"Controller {address.controller.id} {address.type.name} {address.number}"
        return label or None

    async def query_current_profile_number(self, controller: ZenController) -> Optional[int]:
        """Get the current/active Profile number for a controller. Returns int, else None if query fails."""
        response = await self._send_basic(controller, self.CMD["QUERY_CURRENT_PROFILE_NUMBER"])
        if response and len(response) >= 2: # Profile number is 2 bytes, big-endian
            return (response[0] << 8) | response[1]
        return None

    async def change_profile_number(self, controller: ZenController, profile: int) -> bool:
        """Change the active profile number (0-65535). Returns True if successful, else False."""
        if not 0 <= profile <= 0xFFFF: raise ValueError("Profile number must be between 0 and 65535")
        profile_hi = (profile >> 8) & 0xFF
        profile_lo = profile & 0xFF
        return await self._send_basic(controller, self.CMD["CHANGE_PROFILE_NUMBER"], 0x00, [0x00, profile_hi, profile_lo], return_type='ok')

    async def query_tpi_event_emit_state(self, controller: ZenController) -> Optional[ZenEventMode]:
        """Get the current TPI Event emitter mode for a controller, or None if the controller has none."""
        mode_flag = await self._send_basic(controller, self.CMD["QUERY_TPI_EVENT_EMIT_STATE"], return_type='int')
        if mode_flag is None:
            return None
        return ZenEventMode.from_byte(mode_flag)

    async def dali_add_tpi_event_filter(self, address: ZenAddress|ZenInstance, filter: Optional[ZenEventMask] = None) -> bool:
        """Stop specific events from an address/instance from being sent. Events in mask will be muted. Returns true if filter was added successfully."""
        return await self._send_event_filter(self.CMD["DALI_ADD_TPI_EVENT_FILTER"], address, filter)

    async def dali_clear_tpi_event_filter(self, address: ZenAddress|ZenInstance, unfilter: Optional[ZenEventMask] = None) -> bool:
        """Allow specific events from an address/instance to be sent again. Events in mask will be unmuted. Returns true if filter was cleared successfully."""
        return await self._send_event_filter(self.CMD["DALI_CLEAR_TPI_EVENT_FILTERS"], address, unfilter)

    async def _send_event_filter(self, command: int, address: ZenAddress|ZenInstance, mask: Optional[ZenEventMask]) -> bool:
        if mask is None:
            mask = ZenEventMask.all_events()
        instance_number = 0xFF
        if isinstance(address, ZenInstance):
            instance_number = address.number
            address = address.address
        return await self._send_basic(address.controller,
                             command,
                             address.ecg_or_ecd_or_broadcast(),
                             [instance_number, mask.upper(), mask.lower()],
                             return_type='ok')

    async def tpi_event_emit(self, controller: ZenController, mode: Optional[ZenEventMode] = None) -> bool:
        """Enable or disable TPI Event emission. Returns True if the controller confirms the mode, else False."""
        if mode is None:
            mode = ZenEventMode(enabled=True, filtering=False, unicast=False, multicast=True)
        mask = mode.bitmask()
        # Disable first, some controllers otherwise keep stale state
        await self._send_basic(controller, self.CMD["ENABLE_TPI_EVENT_EMIT"], 0x00, return_type='int')
        result = await self._send_basic(controller, self.CMD["ENABLE_TPI_EVENT_EMIT"], mask, return_type='int')
        return result == mask

    async def set_tpi_event_unicast_address(self, controller: ZenController, ipaddr: Optional[str] = None, port: Optional[int] = None) -> Optional[bool]:
        """Point a controller's unicast events at ipaddr:port. With no address, the unicast target is cleared."""
        data = [0,0,0,0,0,0]
        if ipaddr is not None:
            if port is None:
                port = Const.DEFAULT_UNICAST_PORT
            # Valid port number
            if not 0 <= port <= 65535: raise ValueError("Port must be between 0 and 65535")

            # Split port into upper and lower bytes
            data[0] = (port >> 8) & 0xFF
            data[1] = port & 0xFF

            # Convert IP string to bytes
            try:
                ip_bytes = [int(x) for x in ipaddr.split('.')]
            except ValueError:
                raise ValueError(f"Invalid IP address format: {ipaddr}")
            if len(ip_bytes) != 4 or not all(0 <= x <= 255 for x in ip_bytes):
                raise ValueError(f"Invalid IP address format: {ipaddr}")
            data[2:6] = ip_bytes

        return await self._send_dynamic(controller, self.CMD["SET_TPI_EVENT_UNICAST_ADDRESS"], data, return_type='ok')

    async def query_tpi_event_unicast_address(self, controller: ZenController) -> Optional[dict]:
        """Query TPI Events state and unicast configuration.

        Returns:
            Optional dict containing:
            - mode: ZenEventMode
            - port: configured unicast port
            - ip: configured unicast IP address

            Returns None if the controller doesn't answer
        """
        response = await self._send_basic(controller, self.CMD["QUERY_TPI_EVENT_UNICAST_ADDRESS"])
        if response and len(response) >= 7:
            return {
                'mode': ZenEventMode.from_byte(response[0]),
                'port': (response[1] << 8) | response[2],
                'ip': f"{response[3]}.{response[4]}.{response[5]}.{response[6]}"
            }
        return None

    async def query_group_numbers(self, controller: ZenController) -> list[ZenAddress]:
        """Query a controller for groups."""
        groups = await self._send_basic(controller, self.CMD["QUERY_GROUP_NUMBERS"], return_type='list')
        if not groups:
            return []
        return [ZenAddress(controller=controller, type=ZenAddressType.GROUP, number=group) for group in sorted(groups)]

    async def query_dali_colour(self, address: ZenAddress) -> Optional[ZenColour]:
        """Query colour information from a DALI address."""
        response = await self._send_basic(address.controller, self.CMD["QUERY_DALI_COLOUR"], address.ecg())
        return ZenColour.from_bytes(response) if response else None

    async def dali_colour(self, address: ZenAddress, colour: ZenColour, level: int = 255) -> bool:
        """Set a DALI address (ECG, group, broadcast) to a colour. Returns True if command succeeded, False otherwise."""
        return await self._send_colour(address.controller, self.CMD["DALI_COLOUR"], address.ecg_or_group_or_broadcast(), colour, level)

    async def query_group_by_number(self, address: ZenAddress) -> Optional[dict]:
        """Query a DALI group for its occupancy status and level. Returns a dict with group, occupancy and level."""
        response = await self._send_basic(address.controller, self.CMD["QUERY_GROUP_BY_NUMBER"], address.group())
        if response and len(response) == 3:
            return {
                'group': response[0],
                'occupancy': bool(response[1]),
                'level': response[2],
            }
        return None

    async def query_group_membership_by_address(self, address: ZenAddress) -> list[ZenAddress]:
        """Query an address (ECG) for which DALI groups it belongs to. Returns a list of ZenAddress group instances."""
        response = await self._send_basic(address.controller, self.CMD["QUERY_GROUP_MEMBERSHIP_BY_ADDRESS"], address.ecg())
        if response and len(response) == 2:
            return [ZenAddress(controller=address.controller, type=ZenAddressType.GROUP, number=number)
                    for number in self._bits_to_numbers(response)]
        return []

    async def query_scene_numbers_for_group(self, address: ZenAddress) -> list[int]:
        """Query which DALI scenes are associated with a given group number. Returns list of scene numbers."""
        response = await self._send_basic(address.controller, self.CMD["QUERY_SCENE_NUMBERS_FOR_GROUP"], address.group())
        if response and len(response) == 2:
            return self._bits_to_numbers(response)
        return []

    @staticmethod
    def _bits_to_numbers(response: bytes) -> list[int]:
        # High byte is 8-15, low byte is 0-7
        numbers = []
        for i in range(8):
            if response[0] & (1 << i):
                numbers.append(i + 8)
            if response[1] & (1 << i):
                numbers.append(i)
        return sorted(numbers)

    async def query_scene_label_for_group(self, address: ZenAddress, scene: int, generic_if_none: bool=False) -> Optional[str]:
        """Query the label for a scene (0-11) and group number combination. Returns string, or None if no label is set."""
        if not 0 <= scene < Const.MAX_SCENE: raise ValueError(f"Scene must be between 0 and {Const.MAX_SCENE-1}")
        label = await self._send_basic(address.controller, self.CMD["QUERY_SCENE_LABEL_FOR_GROUP"], address.group(), [scene], return_type='str')
        if not label and generic_if_none:
            return f"Scene {scene}"
        return label or None

    async def query_scene_level(self, address: ZenAddress, scene: int) -> Optional[int]:
        """Query the level (0-254) a group goes to for a scene (0-11). Returns None if the group isn't part of the scene."""
        if not 0 <= scene < Const.MAX_SCENE: raise ValueError(f"Scene must be between 0 and {Const.MAX_SCENE-1}")
        response = await self._send_basic(address.controller, self.CMD["QUERY_SCENE_BY_NUMBER"], address.group(), [scene])
        if not response or response[0] == 255:
            return None
        return response[0]

    async def query_scenes_for_group(self, address: ZenAddress, generic_if_none: bool=False) -> list[ZenScene]:
        """Query the scenes attributed to a group, with their labels. Returns a list of ZenScene instances."""
        scenes = []
        for number in await self.query_scene_numbers_for_group(address):
            if number >= Const.MAX_SCENE:
                continue
            label = await self.query_scene_label_for_group(address, number, generic_if_none)
            scenes.append(ZenScene(group=address, number=number, label=label))
        return scenes

    async def query_controller_version_number(self, controller: ZenController) -> Optional[str]:
        """Query the controller's version number. Returns string, or None if query fails."""
        response = await self._send_basic(controller, self.CMD["QUERY_CONTROLLER_VERSION_NUMBER"])
        if response and len(response) == 3:
            return f"{response[0]}.{response[1]}.{response[2]}"
        return None

    async def query_control_gear_dali_addresses(self, controller: ZenController) -> list[ZenAddress]:
        """Query which DALI control gear addresses are present in the database. Returns a list of ZenAddress instances."""
        response = await self._send_basic(controller, self.CMD["QUERY_CONTROL_GEAR_DALI_ADDRESSES"])
        if response and len(response) == 8:  # 8 data bytes representing addresses 0-63
            addresses = []
            for byte_index, byte_value in enumerate(response):
                for bit_index in range(8):
                    if byte_value & (1 << bit_index):
                        addresses.append(ZenAddress(controller=controller, type=ZenAddressType.ECG, number=byte_index * 8 + bit_index))
            return addresses
        return []

    async def dali_scene(self, address: ZenAddress, scene: int) -> bool:
        """Send RECALL SCENE (0-11) to an address (ECG or group or broadcast). Returns True if acknowledged, else False."""
        if not 0 <= scene < Const.MAX_SCENE: raise ValueError(f"Scene number must be between 0 and {Const.MAX_SCENE-1}, got {scene}")
        return await self._send_basic(address.controller, self.CMD["DALI_SCENE"], address.ecg_or_group_or_broadcast(), [0x00, 0x00, scene], return_type='ok')

    async def dali_arc_level(self, address: ZenAddress, level: int) -> bool:
        """Send DIRECT ARC level (0-254) to an address (ECG or group or broadcast). Will fade to the new level. Returns True if acknowledged, else False."""
        if not 0 <= level <= Const.MAX_LEVEL: raise ValueError(f"Level must be between 0 and {Const.MAX_LEVEL}, got {level}")
        return await self._send_basic(address.controller, self.CMD["DALI_ARC_LEVEL"], address.ecg_or_group_or_broadcast(), [0x00, 0x00, level], return_type='ok')

    async def dali_recall_max(self, address: ZenAddress) -> bool:
        """Send RECALL MAX to an address (ECG or group or broadcast). No fade. Returns True if acknowledged, else False."""
        return await self._send_basic(address.controller, self.CMD["DALI_RECALL_MAX"], address.ecg_or_group_or_broadcast(), return_type='ok')

    async def dali_recall_min(self, address: ZenAddress) -> bool:
        """Send RECALL MIN to an address (ECG or group or broadcast). No fade. Returns True if acknowledged, else False."""
        return await self._send_basic(address.controller, self.CMD["DALI_RECALL_MIN"], address.ecg_or_group_or_broadcast(), return_type='ok')

    async def dali_off(self, address: ZenAddress) -> bool:
        """Send OFF to an address (ECG or group or broadcast). No fade. Returns True if acknowledged, else False."""
        return await self._send_basic(address.controller, self.CMD["DALI_OFF"], address.ecg_or_group_or_broadcast(), return_type='ok')

    async def dali_query_level(self, address: ZenAddress) -> Optional[int]:
        """Query the Arc Level for a DALI address (ECG or group). Returns arc level as int, or None if mixed levels."""
        response = await self._send_basic(address.controller, self.CMD["DALI_QUERY_LEVEL"], address.ecg_or_group(), return_type='int')
        if response == 255: return None # 255 indicates mixed levels
        return response

    async def dali_enable_dapc_sequence(self, address: ZenAddress) -> Optional[bool]:
        """Begin a DALI Direct Arc Power Control (DAPC) Sequence.

        DAPC allows overriding of the fade rate for immediate level setting. The sequence
        continues for 250ms. If no arc levels are received within 250ms, the sequence ends
        and normal fade rates resume.

        Returns:
            Optional[bool]: True if successful, False if failed, None if no response
        """
        return await self._send_basic(address.controller, self.CMD["DALI_ENABLE_DAPC_SEQ"], address.ecg_or_group_or_broadcast(), return_type='bool')

    async def query_controller_label(self, controller: ZenController) -> Optional[str]:
        """Request the label for the controller. Returns the controller's label string, or None if query fails."""
        return await self._send_basic(controller, self.CMD["QUERY_CONTROLLER_LABEL"], return_type='str')

    async def query_is_dali_ready(self, controller: ZenController) -> bool:
        """Query whether the DALI line is ready or has a fault. Returns True if DALI line is ready, False if there is a fault."""
        return await self._send_basic(controller, self.CMD["QUERY_IS_DALI_READY"], return_type='ok')

    async def query_controller_startup_complete(self, controller: ZenController) -> bool:
        """Query whether the controller has finished its startup sequence. Returns True if startup is complete, False if still in progress.

        The startup sequence performs DALI queries such as device type, current arc-level, GTIN,
        serial number, etc. The more devices on a DALI line, the longer startup will take to complete.
        """
        return await self._send_basic(controller, self.CMD["QUERY_CONTROLLER_STARTUP_COMPLETE"], return_type='ok')

    async def set_system_variable(self, controller: ZenController, variable: int, value: int) -> bool:
        """Set a system variable (0-147) value (-32768-32767) on the controller. Returns True if successful, else False."""
        if not 0 <= variable < Const.MAX_SYSVAR:
            raise ValueError(f"Variable number must be between 0 and {Const.MAX_SYSVAR-1}, received {variable}")
        if not -32768 <= value <= 32767:
            raise ValueError(f"Value must be between -32768 and 32767, received {value}")
        value_bytes = value.to_bytes(length=2, byteorder="big", signed=True)
        return await self._send_basic(controller, self.CMD["SET_SYSTEM_VARIABLE"], variable, [0x00, value_bytes[0], value_bytes[1]], return_type='ok')

    async def query_system_variable(self, controller: ZenController, variable: int) -> Optional[int]:
        """Query the controller for the value of a system variable (0-147). Returns the variable's value (-32768-32767) if successful, else None."""
        if not 0 <= variable < Const.MAX_SYSVAR:
            raise ValueError(f"Variable number must be between 0 and {Const.MAX_SYSVAR-1}, received {variable}")
        response = await self._send_basic(controller, self.CMD["QUERY_SYSTEM_VARIABLE"], variable)
        if response and len(response) == 2:
            return int.from_bytes(response, byteorder="big", signed=True)
        return None # Value is unset
