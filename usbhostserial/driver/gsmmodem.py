"""
GSM modem driver for usbhostserial,
Based on the usb-serial-for-android project made in Java
    * which is copyright 2011-2013 Google Inc., and copyright 2013 Mike Wakerly
    * https://github.com/mik3y/usb-serial-for-android
Parts rewritten in Python for usbhostserial!
"""
import logging
from typing import Dict, Tuple

from ..device.usb import USB_DIR_IN, USB_DIR_OUT
from ..errors import IoTransferError
from .handler import CommonUsbSerialPort, UsbSerialDriver
from . import usbid

logger = logging.getLogger(__name__)

GSM_INIT_REQTYPE = 0x21
GSM_INIT_REQUEST = 0x22
GSM_INIT_VALUE = 0x01
GSM_USB_WRITE_TIMEOUT = 5000


class GsmModemSerialDriver(UsbSerialDriver):
    """
    Driver for modems with a single bulk data interface (Fibocom / Unisoc)
    """

    def __init__(self, device) -> None:
        super().__init__(device)
        self._ports = [GsmModemSerialPort(self, device, 0)]

    @classmethod
    def get_supported_devices(cls) -> Dict[int, Tuple[int, ...]]:
        return {
            usbid.VENDOR_UNISOC: (
                usbid.FIBOCOM_L610,
                usbid.FIBOCOM_L612,
            )
        }


class GsmModemSerialPort(CommonUsbSerialPort):
    """
    The modem ignores line settings, so there is no set_parameters and no control lines
    """

    def _open_int(self) -> None:
        logger.debug("%r: claiming interfaces, count=%d", self, self._device.interface_count)
        data_interface = self._device.get_interface(0)
        if not self._claim_interface(data_interface):
            raise IoTransferError("Could not claim shared control/data interface")
        logger.debug("%r: endpoint count=%d", self, data_interface.endpoint_count)
        self._read_endpoint = data_interface.find_endpoint(USB_DIR_IN)
        self._write_endpoint = data_interface.find_endpoint(USB_DIR_OUT)
        self.__init_gsm_modem()

    def __init_gsm_modem(self) -> None:
        result = self._connection.control_transfer(
            GSM_INIT_REQTYPE, GSM_INIT_REQUEST, GSM_INIT_VALUE, 0, None, 0, GSM_USB_WRITE_TIMEOUT)
        if result < 0:
            raise IoTransferError("init failed")
