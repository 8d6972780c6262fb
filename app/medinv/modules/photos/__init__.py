"""
Item photo upload: image preprocessing before the bytes reach storage.
"""
