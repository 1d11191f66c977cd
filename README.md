# parkwatch

Server-side pieces of a parking-lot camera system:

- **Video streaming**: splits an H.264 Annex B stream into NAL units and
  streams them to one RTSP client over RTP/UDP. Units too large for one
  packet are sent as FU-A fragments.
- **Resident registration**: a small threaded HTTP endpoint that accepts
  JSON requests and stores residents in an SQLite database keyed by the
  number plate of their vehicle.
- **Plate extraction**: a pipeline that takes raw 800x600 I420 frame files,
  finds a plate with a detection model, straightens it with an alignment
  model, reads it with an OCR callable and saves the result as a JPEG.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Commands

### parkwatch-rtsp

Stream an H.264 file to the first RTSP client that connects:

```
parkwatch-rtsp path/to/video.h264
```

The server binds RTSP on port 7554 and RTP/RTCP on UDP ports 12354/12355,
prints the address to open in a player (`rtsp://127.0.0.1:7554`) and
answers `OPTIONS`, `DESCRIBE`, `SETUP` and `PLAY`. After `PLAY` it sends
one NAL unit every 1/30 s to the client's RTP port, with an RTP timestamp
step of 3000, and finishes when the file is used up. One client is served,
then the command exits.

### parkwatch-users

Run the resident registration server:

```
parkwatch-users [--host 0.0.0.0] [--port 8080] [--database parking.db]
```

Each connection carries one HTTP request with a `Content-Length` header
and a JSON body whose `requestType.reqType` selects the action:

- `user`: the `basicInfo` object (`name`, `plate`, `home`, `phone`) is
  saved, or, if the plate is already registered, its name, home and phone
  are updated. Replies `{"status":"success",...}` or
  `{"status":"error",...}`.
- `init`: the `clientInfo` object (`cliName`, `ipAddr`, `connectTime`) is
  stored as a row of the users table. Replies
  `{"status":"init_success","message":"Client initialized"}` on success.
- `clip`: the `timeInfo` object (`plate`, `time`, `type`) is read and
  logged; no reply is sent.
- any other type: replies `{"status":"error","message":"Unknown request type"}`.

A request without `requestType.reqType` gets no reply.

## Library use

Walking the NAL units of an H.264 file (`parkwatch.h264`):

```python
from parkwatch.h264 import H264Parser, start_code_length

parser = H264Parser.from_file("video.h264")
for frame in parser:
    nalu = frame[start_code_length(frame):]
    print(len(nalu))
```

A unit is only produced once the start code after it has been seen, so the
last unit of a stream is not returned. `H264FormatError` is raised when the
stream does not begin with a start code.

Building RTP packets (`parkwatch.rtp`):

```python
from parkwatch.rtp import RtpHeader, RtpPacketizer

packetizer = RtpPacketizer(RtpHeader(seq=0, timestamp=0, ssrc=1234))
for packet in packetizer.packets(nalu, timestamp_step=3000):
    ...
```

`RtpHeader.pack()` and `RtpHeader.unpack()` convert the 12-byte header;
`fragment_nalu()` returns the payloads for one NAL unit.

Parsing RTSP requests and building replies (`parkwatch.rtsp_messages`):

```python
from parkwatch.rtsp_messages import parse_request, reply_options

request = parse_request("OPTIONS rtsp://127.0.0.1:7554/ RTSP/1.0\r\nCSeq: 1\r\n\r\n")
print(reply_options(request.cseq))
```

`reply_describe`, `reply_setup`, `reply_play` and `reply_heartbeat` build
the other replies. `parkwatch.rtsp_server.RtspServer` puts them together
with the parser and the packetizer and can be used as a context manager.

Using the user database (`parkwatch.database`):

```python
from parkwatch.database import User, UserDatabase

with UserDatabase("parking.db") as db:
    if not db.plate_exists("TEST-PLATE"):
        db.save_user(User(name="Resident", plate="TEST-PLATE", home="101", phone=""))
```

`save_user` and `edit_user` raise `DatabaseError` on failure. The HTTP
server can also be started from code with
`parkwatch.user_server.create_server(host, port, database_path)`.

### Plate extraction

`parkwatch.plate_pipeline.PlatePipeline(detector, aligner, ocr)` works on
files in a directory:

- `process_file(path, save_dir)` handles one frame file of exactly
  800x600x1.5 bytes. If the best detection has a confidence of at least
  0.8, the plate is cropped, resized to 128x128, warped to 256x128 and
  saved as `<text>.jpg` (or `unknown.jpg` when nothing was read). The frame
  file is deleted afterwards; a file of the wrong size is left alone.
- `scan(watch_dir, save_dir)` processes every `.yuv` file in name order.
- `monitor(watch_dir, save_dir, interval=0.1)` scans forever, logging errors.

The parts are supplied by the caller:

- `parkwatch.detection.DetectionModel(infer)`: `infer` receives a float32
  array of shape (1, 192, 256, 3) in [0, 1] and returns the detector output,
  a flat list of `(cx, cy, w, h, confidence, class)` groups.
- `parkwatch.alignment.AlignmentModel(infer)`: `infer` receives a float32
  planar RGB array of shape (1, 3, 128, 128) and returns eight raw corner
  values.
- `ocr`: a callable that receives the 256x128 BGR plate image and yields
  `(symbol, confidence)` pairs; symbols with a confidence of 70 or more
  are joined into the text.

Helpers such as `i420_to_bgr`, `crop_box`, `plate_corners`,
`perspective_coefficients` and `assemble_text` are available on their own.

## What is not included

- No inference runtime and no model files: the detection and alignment
  models only prepare inputs and interpret outputs of the callable you give
  them.
- No OCR engine: text recognition is whatever callable you pass.
- No command for the plate pipeline; it is used from Python.
- No camera capture or live H.264 encoding: the RTSP server streams an
  existing `.h264` file only.
- `clip` requests to the registration server are not stored.