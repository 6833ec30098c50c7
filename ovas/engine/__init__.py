#
# PURPOSE:
# Drives one scan from configuration to termination.
#
# MODULES IN THIS PACKAGE:
# - **ingest.py**: configuration message -> flat preferences
# - **supervisor.py**: process group, signals, reaping of the attack process
# - **lifecycle.py**: start and stop paths of a scan
#
# WORKFLOW:
# defaults + openvas.conf -> get.scan reply ingested -> group leader ->
# attack forked -> pid registered -> wait -> keys removed
#
