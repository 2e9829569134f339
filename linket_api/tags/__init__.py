"""Tag resolution, claim state machine, events and batch minting."""
