"""Line-delimited JSON-RPC front-end."""
