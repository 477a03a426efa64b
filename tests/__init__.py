"""
Test suite for the Clinic Booking Service.

Contains unit and integration tests for booking, status changes, the
directory and staff administration.
"""
import os

# Set environment for testing
os.environ["TESTING"] = "1"
