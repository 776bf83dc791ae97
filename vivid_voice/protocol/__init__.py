"""Wire codec and control event interpreter for the realtime control channel."""
