"""
UA Probe: checks whether an OPC UA server can open subscription callback
connections back to this machine.
"""
