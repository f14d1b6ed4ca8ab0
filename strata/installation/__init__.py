"""Installation metadata — file layout, YAML serialisation and the metadata owner."""
