#!/usr/bin/env python3
"""
SunTime - keeps a sunrise/sunset status line current for the device location
"""

__version__ = "0.1.0"
