"""I/O layer: settings, exchange client, candle storage and collection."""
