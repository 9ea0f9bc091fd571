"""Instance Directory / Discovery / Worker Server / Client。"""
