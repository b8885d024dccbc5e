"""Leave module — requests, their history and the approval workflow."""
