#
# PURPOSE:
# Foundations the rest of the core reads from.
#
# WHAT'S IN THIS MODULE:
# - config.py: process settings (KB address, broker, paths, logging)
# - prefs.py: the flat scan preference set, its defaults and the
#   openvas.conf loader
#
