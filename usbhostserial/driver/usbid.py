"""
Known USB vendor and product ids
"""

VENDOR_FTDI = 0x0403
FTDI_FT232R = 0x6001
FTDI_FT2232H = 0x6010
FTDI_FT4232H = 0x6011
FTDI_FT232H = 0x6014
FTDI_FT231X = 0x6015  # same ID for FT230X, FT231X, FT234XD

VENDOR_ATMEL = 0x03EB
ATMEL_LUFA_CDC_DEMO_APP = 0x2044

VENDOR_ARDUINO = 0x2341
ARDUINO_UNO = 0x0001
ARDUINO_MEGA_2560 = 0x0010
ARDUINO_SERIAL_ADAPTER = 0x003b
ARDUINO_MEGA_ADK = 0x003f
ARDUINO_MEGA_2560_R3 = 0x0042
ARDUINO_UNO_R3 = 0x0043
ARDUINO_MEGA_ADK_R3 = 0x0044
ARDUINO_SERIAL_ADAPTER_R3 = 0x0044
ARDUINO_LEONARDO = 0x8036
ARDUINO_MICRO = 0x8037

VENDOR_VAN_OOIJEN_TECH = 0x16c0
VAN_OOIJEN_TECH_TEENSYDUINO_SERIAL = 0x0483

VENDOR_LEAFLABS = 0x1eaf
LEAFLABS_MAPLE = 0x0004

VENDOR_SILABS = 0x10c4
SILABS_CP2102 = 0xea60  # same ID for CP2101, CP2103, CP2104, CP2109
SILABS_CP2105 = 0xea70
SILABS_CP2108 = 0xea71

VENDOR_PROLIFIC = 0x067b
PROLIFIC_PL2303 = 0x2303  # device type 01, T, HX
PROLIFIC_PL2303GC = 0x23a3  # device type HXN
PROLIFIC_PL2303GB = 0x23b3
PROLIFIC_PL2303GT = 0x23c3
PROLIFIC_PL2303GL = 0x23d3
PROLIFIC_PL2303GE = 0x23e3
PROLIFIC_PL2303GS = 0x23f3

VENDOR_QINHENG = 0x1a86
QINHENG_CH340 = 0x7523
QINHENG_CH341A = 0x5523
QINHENG_CH9102F = 0x55D4

# at least for spark core devices
VENDOR_PARTICLE = 0x2b04
PARTICLE_SPARK_CORE = 0x607d

VENDOR_ARM = 0x0d28
ARM_MBED = 0x0204

VENDOR_ST = 0x0483
ST_CDC = 0x5740

VENDOR_RASPBERRY_PI = 0x2e8a
RASPBERRY_PI_PICO_MICROPYTHON = 0x0005
RASPBERRY_PI_PICO_SDK = 0x000a

VENDOR_GOOGLE = 0x18d1
GOOGLE_CR50 = 0x5014

VENDOR_UNISOC = 0x1782
FIBOCOM_L610 = 0x4D10
FIBOCOM_L612 = 0x4D12
