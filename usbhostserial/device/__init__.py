"""
Line configuration types, the USB descriptor model and the libusb1 transport
"""
