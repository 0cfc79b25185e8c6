"""Client SDK for the state, configuration, pub/sub, lock and hello APIs."""