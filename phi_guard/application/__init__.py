# Application layer: the access mediator and the collaborator interfaces it consumes.
