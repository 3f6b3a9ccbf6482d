# DOGM: dynamic occupancy grid map experiment
#
# Evidential (Dempster-Shafer) occupancy per cell plus a particle filter that
# estimates per-cell velocity.  A simulated scene of moving vehicles feeds a
# measurement-grid sensor; the map is updated once per cycle and its state is
# scored against the scene's ground truth, rendered, and clustered.
#
# Layout:
#   grid_map/       -- the filter (OccupancyGridMap and its pipeline stages)
#   simulation/     -- scene + measurement grid sensor
#   experiment/     -- config, JSONL logger, metrics, runner
#   visualization/  -- images and velocity-cell clustering
