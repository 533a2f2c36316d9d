"""Data models for devices and device events."""

from .device import Device, DeviceEvent, DeviceList, DeviceProperties
