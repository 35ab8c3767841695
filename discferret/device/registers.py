# Control registers (write only)
R_DRIVE_CONTROL         = 0x04
R_ACQCON                = 0x05
R_ACQ_START_EVT         = 0x06
R_ACQ_STOP_EVT          = 0x07
R_ACQ_START_NUM         = 0x08
R_ACQ_STOP_NUM          = 0x09
R_ACQ_CLKSEL            = 0x0A

# Status registers (read only); STATUS2:STATUS1 form the 16-bit status word
R_STATUS1               = 0x0E
R_STATUS2               = 0x0F

R_ACQ_HSTMD_THR_START   = 0x10
R_ACQ_HSTMD_THR_STOP    = 0x11

R_MFM_SYNCWORD_START_L  = 0x20
R_MFM_SYNCWORD_START_H  = 0x21
R_MFM_SYNCWORD_STOP_L   = 0x22
R_MFM_SYNCWORD_STOP_H   = 0x23
R_MFM_MASK_START_L      = 0x24
R_MFM_MASK_START_H      = 0x25
R_MFM_MASK_STOP_L       = 0x26
R_MFM_MASK_STOP_H       = 0x27
R_MFM_CLKSEL            = 0x2F

# Test registers
R_SCRATCHPAD            = 0x30
R_INVERSE_SCRATCHPAD    = 0x31
R_FIXED55               = 0x32
R_FIXEDAA               = 0x33
R_CLOCK_TICKER          = 0x34
R_CLOCK_TICKER_PLL      = 0x35

# Index period counter. Reading the high byte latches the low byte, so HIGH must be read first.
R_INDEX_FREQ_HIGH       = 0x40
R_INDEX_FREQ_LOW        = 0x41

R_HSIO_DIR              = 0xE0
R_HSIO_PIN              = 0xE1

# Stepping controller
R_STEP_RATE             = 0xF0  # 250 us per count
R_STEP_CMD              = 0xFF  # bit 7 = direction, bits 6..0 = step count - 1

STEP_RATE_UNIT_US       = 250
STEP_RATE_MAX_US        = 0xFF * STEP_RATE_UNIT_US

STEP_CMD_TOWARDS_ZERO   = 0x80
STEP_CMD_AWAYFROM_ZERO  = 0x00
STEP_COUNT_MASK         = 0x7F
STEP_BURST_MAX          = STEP_COUNT_MASK + 1

# DRIVE_CONTROL bits
DRIVE_CONTROL_DENSITY   = 0x01
DRIVE_CONTROL_INUSE     = 0x02
DRIVE_CONTROL_DS0       = 0x04
DRIVE_CONTROL_DS1       = 0x08
DRIVE_CONTROL_DS2       = 0x10
DRIVE_CONTROL_DS3       = 0x20
DRIVE_CONTROL_MOTEN     = 0x40
DRIVE_CONTROL_SIDESEL   = 0x80

# ACQCON bits
ACQCON_WRITE            = 0x04
ACQCON_ABORT            = 0x02
ACQCON_START            = 0x01

# ACQ_START_EVT / ACQ_STOP_EVT values
ACQ_EVENT_IMMEDIATE     = 0x00
ACQ_EVENT_INDEX         = 0x01
ACQ_EVENT_SYNC_WORD     = 0x02
ACQ_EVENT_WAIT_HSTMD    = 0x80

# MFM_CLKSEL values
MFM_CLKSEL_1MBPS        = 0x00
MFM_CLKSEL_500KBPS      = 0x01
MFM_CLKSEL_250KBPS      = 0x02
MFM_CLKSEL_125KBPS      = 0x03

# ACQ_CLKSEL values
ACQ_RATE_100MHZ         = 0x00
ACQ_RATE_50MHZ          = 0x01
ACQ_RATE_25MHZ          = 0x02
ACQ_RATE_12_5MHZ        = 0x03

# Status word bits
STATUS_TRACK0_HIT       = 0x0010
STATUS_NEW_INDEX_MEAS   = 0x0008
STATUS_ACQSTATUS_MASK   = 0x0007
STATUS_ACQ_WRITING      = 0x0004
STATUS_ACQ_WAITING      = 0x0002
STATUS_ACQ_ACQUIRING    = 0x0001
STATUS_ACQ_IDLE         = 0x0000
STATUS_INDEX            = 0x8000
STATUS_TRACK0           = 0x4000
STATUS_WRITE_PROTECT    = 0x2000
STATUS_DISC_CHANGE      = 0x1000
STATUS_DENSITY          = 0x0800
STATUS_STEPPING         = 0x0400
STATUS_RAM_EMPTY        = 0x0200
STATUS_RAM_FULL         = 0x0100


__all__ = [name for name in list(globals()) if name.isupper()]
