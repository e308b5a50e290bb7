# Tests for router2mqtt
