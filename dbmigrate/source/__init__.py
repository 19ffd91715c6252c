"""Migration sources: the driver interface, the registry and built-in drivers."""