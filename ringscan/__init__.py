"""ringscan -- reader for dual-ring circular visual codes.

Decodes the outer "product" ring and the inner "date" ring of a circular
code from a still photograph or a live camera feed. Each ring carries a
fixed number of bits in equal angular sectors, aligned by a red start
marker sector.

The pipeline is:
1. Estimate the ring radii by radial luminance scanning (``radial``)
2. Classify one bit per sector with lighting-adaptive thresholds (``decoder``)
3. For live video, score each frame cheaply (``analyzer``) and let a
   hysteresis controller decide when to commit to a decode (``controller``)
"""
