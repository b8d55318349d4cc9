from xray_exporter.main import main

main()
