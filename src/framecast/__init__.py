"""framecast: timeline-driven frame compositing and encoding.

Turns a sequence of still images (or a source video) plus timed
captions into one synchronized audio/video file. Frames are produced
per tick against wall-clock time, blended across segment boundaries,
mixed with up to two audio sources and streamed into an ffmpeg-encoded
container.
"""
