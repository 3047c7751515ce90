"""soilhub: moisture-sensor fleet hub.

Receives telemetry from provisioned sensor nodes over UDP, keeps a small
in-memory registry of devices, relays commands back to them, and flashes
newly attached nodes over USB serial.

Quickstart::

    from soilhub.config import HubConfig
    from soilhub.fleet.manager import FleetManager

    manager = FleetManager(HubConfig.from_env())
    manager.start()        # UDP telemetry on port 12345
    manager.provision()    # flash + register the first attached node
"""

__version__ = "1.0.0"
