"""Tasks module: recurrence, completion cascades, rollover and relationship maintenance."""
