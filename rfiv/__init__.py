"""RFIV patient tracking API.

Patients are registered with the RFID tag they wear; tag readers report
location pings which are stored on the patient record.
"""

__version__ = "1.0.0"
