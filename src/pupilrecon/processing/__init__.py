"""This is the processing submodule.

This module contains the functionality that turns raw pupil data into
reconstructed data. This includes the completeness check of sessions, the
automatic blink detection and reconstruction, and the manual editors.
"""
