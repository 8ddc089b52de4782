"""workescrow core: models, identities, canonical encoding, journal."""
