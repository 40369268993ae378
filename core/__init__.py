"""Pipeline core: job model, stage contract, retry policy and orchestrator."""
