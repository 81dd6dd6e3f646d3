"""Job lifecycle services. Instances are built once by ``studio.container`` and injected."""
